"""
typedapi — Handler Dispatcher
==============================

What:  Binds handlers to declared endpoints and runs the per-request pipeline.
Why:   Completeness is checked once, before serving: a missing or duplicate
       handler is a startup failure, never a request-time surprise.
How:   HandlerTable collects (group, endpoint id) → handler registrations and
       build() seals them into a read-only DispatchTable. The Dispatcher uses
       that table for every request:

           match method + path ─► decode inputs ─► handler ─► encode output
                 │                     │              │              │
            NoRouteFound (404)   ValidationError   HandlerError   EncodingError (500)
                                      (400)       (declared status)
                                                  anything else → UnhandledFault (500)

Concurrency:
    The DispatchTable is never written after build(), so every in-flight
    request reads it without locks. Async handlers run on the event loop;
    plain functions run in Starlette's threadpool so they cannot stall other
    requests. Uploaded files live in an AsyncExitStack owned by the request,
    released even when the handler task is cancelled.

Example:
    table = HandlerTable(MyApi)

    @table.handles("Greetings", "hello-world")
    async def hello_world(request: HandlerRequest) -> str:
        return "Hello World"

    dispatch_table = table.build()   # IncompleteApiError if anything is missing
"""

import asyncio
import inspect
import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlencode

from starlette.concurrency import run_in_threadpool
from starlette.formparsers import FormParser
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from typedapi.config import settings
from typedapi.endpoint import HttpApiEndpoint, ResponseSpec
from typedapi.exceptions import (
    DuplicateHandlerError,
    EncodingError,
    HandlerError,
    HandlerTableSealedError,
    HandlerTimeoutError,
    IncompleteApiError,
    NoRouteFound,
    UnhandledFault,
    UnknownEndpointError,
    ValidationError,
)
from typedapi.multipart import UploadStore
from typedapi.registry import HttpApi, HttpApiGroup
from typedapi.schema import MULTIPART, TEXT, URL_PARAMS, Schema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerRequest:
    """
    Decoded inputs handed to a handler.

    Each part is the typed value decoded by the endpoint's schema, or None
    when the endpoint declares no schema for it. `request` is the raw
    Starlette request for anything the declaration does not cover.
    """

    path: Any = None
    query: Any = None
    headers: Any = None
    payload: Any = None
    request: Optional[Request] = None


Handler = Callable[[HandlerRequest], Any]


@dataclass(frozen=True)
class Route:
    """One sealed dispatch entry."""

    group: HttpApiGroup
    endpoint: HttpApiEndpoint
    handler: Handler

    @property
    def name(self) -> str:
        return f"{self.group.name}.{self.endpoint.id}"


# ══════════════════════════════════════════════════════════════════════════
# Handler Table (build time)
# ══════════════════════════════════════════════════════════════════════════


class HandlerTable:
    """
    Checked mapping from declared endpoints to handlers.

    Every registration is validated immediately; build() checks
    exhaustiveness and returns the sealed DispatchTable.
    """

    def __init__(self, api: HttpApi):
        self.api = api
        self._handlers: Dict[Tuple[str, str], Handler] = {}
        self._sealed = False

    def register(self, group: str, endpoint_id: str, handler: Handler) -> "HandlerTable":
        """
        Associate exactly one handler with a declared endpoint.

        Raises:
            UnknownEndpointError    the API does not declare (group, endpoint_id)
            DuplicateHandlerError   a handler is already registered for it
            HandlerTableSealedError build() has already been called
        """
        if self._sealed:
            raise HandlerTableSealedError(group, endpoint_id)
        if group not in self.api or endpoint_id not in self.api.group(group):
            raise UnknownEndpointError(group, endpoint_id)
        key = (group, endpoint_id)
        if key in self._handlers:
            raise DuplicateHandlerError(group, endpoint_id)
        self._handlers[key] = handler
        return self

    def handles(self, group: str, endpoint_id: str) -> Callable[[Handler], Handler]:
        """Decorator form of register(); returns the function unchanged."""

        def decorator(handler: Handler) -> Handler:
            self.register(group, endpoint_id, handler)
            return handler

        return decorator

    def missing(self) -> List[Tuple[str, str]]:
        """Declared (group, endpoint id) pairs without a handler, in declaration order."""
        return [
            (group.name, endpoint.id)
            for group, endpoint in self.api.iter_endpoints()
            if (group.name, endpoint.id) not in self._handlers
        ]

    def build(self) -> "DispatchTable":
        """
        Seal the table.

        Raises:
            IncompleteApiError listing every endpoint lacking a handler.
        """
        missing = self.missing()
        if missing:
            raise IncompleteApiError(self.api.name, missing)
        routes = tuple(
            Route(group, endpoint, self._handlers[(group.name, endpoint.id)])
            for group, endpoint in self.api.iter_endpoints()
        )
        self._sealed = True
        logger.info("Dispatch table for %s built with %d routes", self.api.name, len(routes))
        return DispatchTable(self.api, routes)


class DispatchTable:
    """Sealed, request-ready routes in declaration order."""

    def __init__(self, api: HttpApi, routes: Tuple[Route, ...]):
        self.api = api
        self.routes = routes
        self._by_key = MappingProxyType({(r.group.name, r.endpoint.id): r for r in routes})

    def route(self, group: str, endpoint_id: str) -> Route:
        return self._by_key[(group, endpoint_id)]

    def resolve(self, method: str, path: str) -> Tuple[Route, Dict[str, str]]:
        """
        Find the first route matching method and path.

        Returns:
            (route, raw path parameter values)

        Raises:
            NoRouteFound when no declared endpoint matches.
        """
        method = method.upper()
        for route in self.routes:
            if route.endpoint.method != method:
                continue
            values = route.endpoint.path.match(path)
            if values is not None:
                return route, values
        raise NoRouteFound(method, path)

    def __iter__(self) -> Iterator[Route]:
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)


# ══════════════════════════════════════════════════════════════════════════
# Wire Helpers
# ══════════════════════════════════════════════════════════════════════════


def collect_fields(items: Iterable[Tuple[str, Any]], schema: Schema) -> Dict[str, Any]:
    """
    Turn ordered (key, value) pairs into the raw dict a struct decodes.

    Fields declared as arrays collect every value of their key; other
    fields take the last value. Keys the struct does not declare are
    dropped (ignored, not rejected).
    """
    grouped: Dict[str, List[Any]] = {}
    for key, value in items:
        grouped.setdefault(key, []).append(value)
    raw: Dict[str, Any] = {}
    for name, field_schema in schema.fields:
        values = grouped.get(name)
        if not values:
            continue
        raw[name] = values if field_schema.accepts_many else values[-1]
    return raw


def render(spec: ResponseSpec, value: Any) -> Response:
    """
    Encode a value with a declared response and build the HTTP response.

    Raises:
        EncodingError when the value does not fit the declared schema.
    """
    schema = spec.schema
    if schema is None:
        return Response(status_code=spec.status)
    wire = schema.encode(value)
    encoding = schema.encoding
    if encoding.kind == TEXT:
        return Response(content=str(wire), status_code=spec.status, media_type=encoding.content_type)
    if encoding.kind == URL_PARAMS:
        return Response(
            content=urlencode(wire, doseq=True),
            status_code=spec.status,
            media_type=encoding.content_type,
        )
    return JSONResponse(content=wire, status_code=spec.status)


# ══════════════════════════════════════════════════════════════════════════
# Dispatcher (request time)
# ══════════════════════════════════════════════════════════════════════════


class Dispatcher:
    """
    Per-request routing, validation, invocation and encoding.

    Mounted by server.create_app() as the catch-all route; `dispatch` is the
    Starlette endpoint. Errors are raised as typedapi exceptions and turned
    into responses by the application's exception handlers.
    """

    def __init__(
        self,
        table: DispatchTable,
        upload_store: Optional[UploadStore] = None,
        handler_timeout: Optional[float] = None,
    ):
        """
        Args:
            table:           Sealed dispatch table
            upload_store:    Where multipart file parts are streamed (default: settings)
            handler_timeout: Seconds per handler call; None uses settings,
                             0 disables the bound
        """
        self.table = table
        self.upload_store = upload_store or UploadStore()
        self.handler_timeout = (
            settings.handler_timeout_seconds if handler_timeout is None else handler_timeout
        )

    async def dispatch(self, request: Request) -> Response:
        route, path_values = self.table.resolve(request.method, request.url.path)
        logger.debug("Resolved %s %s to %s", request.method, request.url.path, route.name)

        async with AsyncExitStack() as stack:
            handler_request = await self.decode_inputs(route, path_values, request, stack)
            try:
                value = await self.invoke(route, handler_request)
            except HandlerError as exc:
                return self._render_declared_error(route, exc)

        try:
            return render(route.endpoint.success, value)
        except EncodingError as exc:
            logger.error("Handler %s returned an undeclared value: %s", route.name, exc.message)
            raise

    async def decode_inputs(
        self,
        route: Route,
        path_values: Dict[str, str],
        request: Request,
        stack: AsyncExitStack,
    ) -> HandlerRequest:
        """
        Decode path, query, headers and payload, in that order.

        Raises:
            ValidationError tagged with the failing location; the handler
            is never invoked.
        """
        endpoint = route.endpoint
        try:
            return HandlerRequest(
                path=self._decode("path", endpoint.path_schema, path_values),
                query=self._decode(
                    "query",
                    endpoint.query_schema,
                    lambda schema: collect_fields(request.query_params.multi_items(), schema),
                ),
                headers=self._decode(
                    "headers",
                    endpoint.headers_schema,
                    lambda schema: self._header_fields(request, schema),
                ),
                payload=await self._decode_payload(endpoint, request, stack),
                request=request,
            )
        except ValidationError as exc:
            logger.warning("Rejected %s for %s: %s", request.url.path, route.name, exc.message)
            raise

    async def invoke(self, route: Route, handler_request: HandlerRequest) -> Any:
        """
        Run the handler, bounded by the configured timeout.

        Raises:
            HandlerError        re-raised for the caller to encode
            HandlerTimeoutError the timeout fired before the handler finished
            UnhandledFault      any other exception, including a TimeoutError
                                raised by the handler itself
        """
        task = asyncio.ensure_future(self._call(route.handler, handler_request))
        try:
            if self.handler_timeout:
                done, _ = await asyncio.wait({task}, timeout=self.handler_timeout)
                if not done:
                    # Uploaded files are released only once the handler has stopped
                    task.cancel()
                    await asyncio.wait({task})
                    logger.error("Handler %s timed out after %ss", route.name, self.handler_timeout)
                    raise HandlerTimeoutError(route.name, self.handler_timeout)
            return await task
        except asyncio.CancelledError:
            task.cancel()
            raise
        except (HandlerError, HandlerTimeoutError):
            raise
        except Exception as exc:
            logger.error("Handler %s failed: %s", route.name, str(exc), exc_info=True)
            raise UnhandledFault(route.name, exc) from exc

    @staticmethod
    async def _call(handler: Handler, handler_request: HandlerRequest) -> Any:
        if inspect.iscoroutinefunction(handler):
            return await handler(handler_request)
        result = await run_in_threadpool(handler, handler_request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _render_declared_error(self, route: Route, exc: HandlerError) -> Response:
        candidates = [
            spec for spec in route.endpoint.errors
            if exc.status is None or spec.status == exc.status
        ]
        for spec in candidates:
            try:
                return render(spec, exc.value)
            except EncodingError:
                continue
        logger.error(
            "Handler %s raised an error its endpoint does not declare (status=%s)",
            route.name,
            exc.status,
        )
        raise UnhandledFault(route.name, exc) from exc

    # ── Decoding Helpers ──────────────────────────────────────────────────

    @staticmethod
    def _decode(location: str, schema: Optional[Schema], raw: Any) -> Any:
        if schema is None:
            return None
        if callable(raw):
            raw = raw(schema)
        try:
            return schema.decode(raw)
        except ValidationError as exc:
            raise exc.at(location) from None

    @staticmethod
    def _header_fields(request: Request, schema: Schema) -> Dict[str, Any]:
        raw: Dict[str, Any] = {}
        for name, field_schema in schema.fields:
            values = request.headers.getlist(name)
            if values:
                raw[name] = values if field_schema.accepts_many else values[0]
        return raw

    async def _decode_payload(
        self,
        endpoint: HttpApiEndpoint,
        request: Request,
        stack: AsyncExitStack,
    ) -> Any:
        schema = endpoint.payload_schema
        if schema is None:
            return None

        kind = schema.encoding.kind
        if kind == MULTIPART:
            try:
                items = await stack.enter_async_context(self.upload_store.receive(request))
            except ValidationError as exc:
                raise exc.at("payload") from None
            return self._decode("payload", schema, collect_fields(items, schema))

        if kind == URL_PARAMS:
            # Parsed as url-encoded whatever Content-Type the client sent
            form = await FormParser(request.headers, request.stream()).parse()
            return self._decode("payload", schema, collect_fields(form.multi_items(), schema))

        body = await request.body()
        if kind == TEXT:
            return self._decode("payload", schema, body.decode("utf-8", errors="replace"))

        try:
            raw = json.loads(body) if body else None
        except ValueError:
            raise ValidationError(
                message="Request body is not valid JSON",
                issues=[{"path": "", "message": "Request body is not valid JSON", "type": "json_invalid"}],
            ).at("payload") from None
        return self._decode("payload", schema, raw)
