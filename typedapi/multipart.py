"""
typedapi — Multipart Upload Storage
====================================

What:  Streams the file parts of a multipart request to disk and exposes them
       to handlers as PersistedFile values.
Why:   Handlers get a stable file value (name, content type, size, content
       access) instead of a half-consumed request stream, and uploads never
       have to fit in memory.
How:   Starlette parses the multipart body; each file part is copied in
       chunks (aiofiles) into a per-request directory with a UUID filename,
       and the size limit is enforced while copying. The directory and the
       parsed form are released when the request ends, whether the handler
       returned, raised, or was cancelled.
Who:   Used by the Dispatcher for endpoints whose payload is Multipart(...),
       and by HttpApiClient to send PersistedFile values.

Directory Structure (lifetime of one request):
    uploads/
    └── 3f2a9c0e.../              ← one directory per request
        ├── 7b1d...-e2.png
        └── 0c44...-91.csv
"""

import logging
import shutil
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple, Union

import aiofiles
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser
from starlette.requests import Request

from typedapi.config import settings
from typedapi.exceptions import ValidationError

logger = logging.getLogger(__name__)

FormItems = List[Tuple[str, Union[str, "PersistedFile"]]]


@dataclass(frozen=True)
class PersistedFile:
    """
    An uploaded file part.

    Attributes:
        key:          Form field the part was sent under (e.g. "files")
        name:         Client-supplied filename (display only, never used as a path)
        content_type: Client-supplied content type of the part
        size:         Byte length
        path:         Where the content lives on disk
    """

    key: str
    name: str
    content_type: str
    size: int
    path: Path

    async def read(self) -> bytes:
        """Read the whole content without blocking the event loop."""
        async with aiofiles.open(self.path, "rb") as f:
            return await f.read()

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        content_type: str = "application/octet-stream",
        key: str = "files",
    ) -> "PersistedFile":
        """Wrap an existing local file, e.g. to send it with HttpApiClient."""
        file_path = Path(path)
        return cls(
            key=key,
            name=file_path.name,
            content_type=content_type,
            size=file_path.stat().st_size,
            path=file_path,
        )


class UploadStore:
    """
    Receives multipart requests into a temporary per-request directory.

    Usage:
        async with upload_store.receive(request) as items:
            ...  # items: [("files", PersistedFile(...)), ("note", "text"), ...]
        # files and form are gone here
    """

    def __init__(
        self,
        root: Optional[str] = None,
        max_size: Optional[int] = None,
        chunk_size: Optional[int] = None,
    ):
        """
        Args:
            root:       Override settings.upload_root (used in tests)
            max_size:   Override settings.max_upload_size
            chunk_size: Override settings.upload_chunk_size
        """
        self.root = Path(root or settings.upload_root).resolve()
        self.max_size = max_size or settings.max_upload_size
        self.chunk_size = chunk_size or settings.upload_chunk_size

    @asynccontextmanager
    async def receive(self, request: Request) -> AsyncIterator[FormItems]:
        """
        Parse a multipart request, persisting its file parts.

        Yields the form as ordered (field, value) pairs where file parts are
        PersistedFile and text parts are str. Empty file inputs (no filename,
        no bytes) are skipped, as browsers send them for untouched inputs.

        Raises:
            ValidationError if the request is not multipart/form-data (media
            type compared case-insensitively), the body cannot be parsed or a
            part exceeds the size limit.
        """
        content_type = request.headers.get("content-type", "")
        if not content_type.lower().startswith("multipart/form-data"):
            raise ValidationError(
                message="Expected a multipart/form-data request body",
                issues=[{
                    "path": "",
                    "message": f"Unsupported content type '{content_type or 'none'}'",
                    "type": "content_type",
                }],
            )

        directory = self.root / uuid.uuid4().hex
        try:
            form = await MultiPartParser(request.headers, request.stream()).parse()
        except MultiPartException as exc:
            raise ValidationError(
                message=f"Malformed multipart body: {exc.message}",
                issues=[{"path": "", "message": exc.message, "type": "multipart_invalid"}],
            ) from None
        try:
            items: FormItems = []
            for key, value in form.multi_items():
                if isinstance(value, UploadFile):
                    if not value.filename and not value.size:
                        continue
                    items.append((key, await self._persist(directory, key, value)))
                else:
                    items.append((key, value))
            yield items
        finally:
            await form.close()
            await self.cleanup(directory)

    async def _persist(self, directory: Path, key: str, upload: UploadFile) -> PersistedFile:
        # UUID filename: the client-supplied name never reaches the file system
        suffix = Path(upload.filename or "").suffix.lower()
        target = directory / f"{uuid.uuid4()}{suffix}"
        directory.mkdir(parents=True, exist_ok=True)

        size = 0
        async with aiofiles.open(target, "wb") as f:
            while True:
                chunk = await upload.read(self.chunk_size)
                if not chunk:
                    break
                size += len(chunk)
                if size > self.max_size:
                    raise ValidationError(
                        message=f"{key}: file exceeds the maximum size of {self.max_size} bytes",
                        issues=[{
                            "path": key,
                            "message": f"File '{upload.filename}' exceeds {self.max_size} bytes",
                            "type": "file_too_large",
                        }],
                    )
                await f.write(chunk)

        logger.debug("Stored upload part %s (%d bytes) as %s", key, size, target.name)
        return PersistedFile(
            key=key,
            name=upload.filename or target.name,
            content_type=upload.content_type or "application/octet-stream",
            size=size,
            path=target,
        )

    async def cleanup(self, directory: Path) -> None:
        """
        Remove a request's upload directory.

        Cleanup is best-effort: a failure is logged, never raised, so it
        cannot replace the response (or the error) of the request itself.
        """
        if not directory.exists():
            return
        try:
            await run_in_threadpool(shutil.rmtree, directory)
            logger.debug("Cleaned up upload directory %s", directory.name)
        except OSError as e:
            logger.warning("Failed to clean up upload directory %s: %s", directory, str(e))
