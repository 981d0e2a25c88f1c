"""
typedapi — Derived API Client
==============================

What:  A typed async client derived from an HttpApi description.
Why:   Callers reuse the server's own declarations: inputs are encoded and
       responses decoded with the exact schemas the server validates with.
How:   `client[group][endpoint_id](...)` (or `client.Group[endpoint_id]`)
       encodes path/query/headers/payload, sends the request with an
       httpx.AsyncClient, and decodes the body with the declared success
       schema, or with the matching error schema on a non-2xx status.

Failure kinds (all ClientError subclasses except the schema errors):
    EncodingError          the call input does not fit the declaration
    NetworkError           no HTTP response (connection, DNS, timeout)
    ApiErrorResponse       a declared error; `.value` is the decoded body
    UnexpectedStatusError  a status the endpoint does not declare
    ValidationError        the response body does not fit the declaration

The client does no caching and no retries.

Example:
    async with HttpApiClient.make(MyApi, base_url="http://localhost:3001") as client:
        greeting = await client.Greetings["hello-world"](
            headers={"X-API-Key": "secret", "X-Request-ID": "demo-1"},
        )
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from typedapi.config import settings
from typedapi.dispatcher import collect_fields
from typedapi.endpoint import HttpApiEndpoint
from typedapi.exceptions import (
    ApiErrorResponse,
    EncodingError,
    NetworkError,
    UnexpectedStatusError,
    ValidationError,
)
from typedapi.multipart import PersistedFile
from typedapi.registry import HttpApi, HttpApiGroup
from typedapi.schema import MULTIPART, TEXT, URL_PARAMS, Schema

logger = logging.getLogger(__name__)


def _encode_input(schema: Optional[Schema], value: Any, location: str) -> Any:
    if schema is None:
        return None
    if value is None and schema.kind == "struct":
        value = {}
    try:
        return schema.encode(value)
    except EncodingError as exc:
        raise EncodingError(
            message=f"Invalid {location}: {exc.message}",
            path=exc.path,
            context={"location": location},
        ) from None


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _pairs(wire: Optional[Mapping[str, Any]]) -> List[Tuple[str, str]]:
    """Flatten an encoded struct into (key, value) pairs, repeating keys for arrays."""
    pairs: List[Tuple[str, str]] = []
    for key, value in (wire or {}).items():
        if isinstance(value, list):
            pairs.extend((key, _as_text(item)) for item in value)
        else:
            pairs.append((key, _as_text(value)))
    return pairs


class EndpointClient:
    """Callable for one endpoint: `await endpoint(path=..., query=..., headers=..., payload=...)`."""

    def __init__(self, http: httpx.AsyncClient, group: HttpApiGroup, endpoint: HttpApiEndpoint):
        self._http = http
        self.group = group
        self.endpoint = endpoint

    def __repr__(self) -> str:
        return f"<EndpointClient {self.group.name}.{self.endpoint.id} {self.endpoint.method} {self.endpoint.path}>"

    async def __call__(
        self,
        *,
        path: Any = None,
        query: Any = None,
        headers: Any = None,
        payload: Any = None,
    ) -> Any:
        endpoint = self.endpoint
        url = endpoint.path.resolve(_encode_input(endpoint.path_schema, path, "path") or {})
        params = _pairs(_encode_input(endpoint.query_schema, query, "query"))
        request_headers = _pairs(_encode_input(endpoint.headers_schema, headers, "headers"))
        body, content_type = await self._body(payload)
        if content_type:
            request_headers.append(("Content-Type", content_type))

        try:
            response = await self._http.request(
                endpoint.method,
                url,
                params=params or None,
                headers=request_headers or None,
                **body,
            )
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", endpoint.method, url, str(exc))
            raise NetworkError(endpoint.method, url, exc) from exc

        logger.debug("%s %s → %d", endpoint.method, url, response.status_code)
        return self._decode_response(response)

    async def _body(self, payload: Any) -> Tuple[Dict[str, Any], Optional[str]]:
        """Request body keyword arguments for httpx, plus an explicit Content-Type if needed."""
        schema = self.endpoint.payload_schema
        if schema is None:
            return {}, None
        kind = schema.encoding.kind
        wire = _encode_input(schema, payload, "payload")

        if kind == MULTIPART:
            data: Dict[str, Any] = {}
            files: List[Tuple[str, Tuple[str, bytes, str]]] = []
            for name, field_schema in schema.fields:
                if name not in wire:
                    continue
                if field_schema.is_file:
                    parts = wire[name] if isinstance(wire[name], list) else [wire[name]]
                    for part in parts:
                        files.append((name, await self._file_part(part)))
                elif isinstance(wire[name], list):
                    data[name] = [_as_text(item) for item in wire[name]]
                else:
                    data[name] = _as_text(wire[name])
            # httpx only switches to multipart/form-data when files are present
            if not files:
                files.append(("", ("", b"", "application/octet-stream")))
            return {"data": data, "files": files}, None

        if kind == URL_PARAMS:
            content = str(httpx.QueryParams(_pairs(wire))).encode("utf-8")
            return {"content": content}, schema.encoding.content_type
        if kind == TEXT:
            return {"content": _as_text(wire).encode("utf-8")}, schema.encoding.content_type
        return {"json": wire}, None

    @staticmethod
    async def _file_part(part: PersistedFile) -> Tuple[str, bytes, str]:
        return (part.name, await part.read(), part.content_type)

    def _decode_response(self, response: httpx.Response) -> Any:
        endpoint = self.endpoint
        status = response.status_code

        if 200 <= status < 300:
            spec = endpoint.success_for(status)
            if spec is None:
                raise UnexpectedStatusError(status, response.text)
            if spec.schema is None:
                return None
            return spec.schema.decode(self._read_body(response, spec.schema))

        candidates = endpoint.errors_for(status)
        for spec in candidates:
            try:
                value = spec.schema.decode(self._read_body(response, spec.schema))
            except ValidationError:
                continue
            raise ApiErrorResponse(status, value)
        raise UnexpectedStatusError(status, response.text)

    @staticmethod
    def _read_body(response: httpx.Response, schema: Schema) -> Any:
        kind = schema.encoding.kind
        if kind == TEXT:
            return response.text
        if kind == URL_PARAMS:
            return collect_fields(httpx.QueryParams(response.text).multi_items(), schema)
        try:
            return response.json()
        except (ValueError, json.JSONDecodeError):
            raise ValidationError(
                message="Response body is not valid JSON",
                issues=[{"path": "", "message": "Response body is not valid JSON", "type": "json_invalid"}],
            ) from None


class GroupClient:
    """Endpoints of one group, addressed by endpoint id: `group["hello-world"]`."""

    def __init__(self, http: httpx.AsyncClient, group: HttpApiGroup):
        self.group = group
        self._endpoints = {
            endpoint.id: EndpointClient(http, group, endpoint) for endpoint in group.endpoints
        }

    def __getitem__(self, endpoint_id: str) -> EndpointClient:
        return self._endpoints[endpoint_id]

    def __getattr__(self, name: str) -> EndpointClient:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._endpoints[name]
        except KeyError:
            raise AttributeError(f"Group '{self.group.name}' has no endpoint '{name}'") from None

    def __iter__(self):
        return iter(self._endpoints)


class HttpApiClient:
    """
    Client for a whole API, one GroupClient per group.

    Owns its httpx.AsyncClient unless one is passed in; use it as an async
    context manager (or call aclose()) to release connections.
    """

    def __init__(self, api: HttpApi, http: httpx.AsyncClient, owns_http: bool = True):
        self.api = api
        self._http = http
        self._owns_http = owns_http
        self._groups = {group.name: GroupClient(http, group) for group in api.groups}

    @classmethod
    def make(
        cls,
        api: HttpApi,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "HttpApiClient":
        """
        Derive a client for `api` talking to `base_url`.

        Args:
            base_url:  Server root (defaults to settings.client_base_url)
            transport: httpx transport override, e.g. httpx.ASGITransport(app)
                       to call an application in-process
            timeout:   Seconds per request (defaults to settings.client_timeout_seconds)
            headers:   Headers sent with every request
        """
        http = httpx.AsyncClient(
            base_url=base_url or settings.client_base_url,
            transport=transport,
            timeout=timeout or settings.client_timeout_seconds,
            headers=dict(headers or {}),
        )
        return cls(api, http)

    def __getitem__(self, group: str) -> GroupClient:
        return self._groups[group]

    def __getattr__(self, name: str) -> GroupClient:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._groups[name]
        except KeyError:
            raise AttributeError(f"API '{self.api.name}' has no group '{name}'") from None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "HttpApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

