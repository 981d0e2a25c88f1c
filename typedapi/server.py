"""
typedapi — Server Application Factory
======================================

What:  Turns an HttpApi description plus its sealed DispatchTable into a
       FastAPI application, and runs it under uvicorn.
Why:   Centralizes middleware registration, error mapping, documentation
       routes and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance
       whose catch-all route hands every request to the Dispatcher.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware Chain:                                  │
    │  ┌──────────┐ ┌─────────────────┐ ┌──────────────┐  │
    │  │ Req ID   │→│  Logging        │→│  CORS        │  │
    │  └──────────┘ └─────────────────┘ └──────────────┘  │
    │                                                     │
    │  Routes:                                            │
    │  ┌──────────────┐ ┌───────────────┐ ┌────────────┐  │
    │  │ GET /docs    │ │ GET /openapi  │ │ /{path}    │  │
    │  │ (Swagger UI) │ │  (derived)    │ │ Dispatcher │  │
    │  └──────────────┘ └───────────────┘ └────────────┘  │
    │                                                     │
    │  Exception Handlers:                                │
    │  ┌───────────────────────────────────────────────┐  │
    │  │ Validation→400 │ NoRoute→404 │ Timeout→504    │  │
    │  │ Encoding / UnhandledFault / unexpected → 500  │  │
    │  └───────────────────────────────────────────────┘  │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, create the upload directory, log the routes.
    Shutdown: log shutdown (handlers own no shared resources to release).
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse

from typedapi import __version__
from typedapi.config import Settings, settings as default_settings
from typedapi.dispatcher import Dispatcher, DispatchTable
from typedapi.endpoint import HTTP_METHODS
from typedapi.exceptions import (
    EncodingError,
    HandlerTimeoutError,
    NoRouteFound,
    TypedApiError,
    UnhandledFault,
    ValidationError,
)
from typedapi.middleware.logging import RequestLoggingMiddleware
from typedapi.middleware.request_id import RequestIDMiddleware, request_id_var
from typedapi.multipart import UploadStore
from typedapi.openapi import build_openapi
from typedapi.registry import HttpApi
from typedapi.responses import ErrorResponse, ValidationDetails

logger = logging.getLogger(__name__)

GENERIC_FAULT_MESSAGE = "An unexpected error occurred. Please try again or contact support."


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    When:   Called once during startup, before anything else logs.
    """
    logging.basicConfig(
        level=getattr(logging, level or default_settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # uvicorn's access log duplicates RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        details=details,
        request_id=request_id_var.get("") or None,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map typedapi exceptions to HTTP responses.

    Handler hierarchy:
        ValidationError     → 400 Bad Request (field-level issues included)
        NoRouteFound        → 404 Not Found
        HandlerTimeoutError → 504 Gateway Timeout
        EncodingError       → 500 (handler returned an undeclared shape)
        UnhandledFault      → 500 (handler failed in an undeclared way)
        TypedApiError       → 500 (any other framework error)
        Exception           → 500 (unexpected errors)

    Security: 500 responses never carry exception text, paths or stack
    traces; those are logged server-side with the request ID.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        details = ValidationDetails(location=exc.location, issues=exc.issues)
        return _error_response(400, "validation_error", exc.message, details.model_dump())

    @app.exception_handler(NoRouteFound)
    async def handle_no_route(request: Request, exc: NoRouteFound):
        return _error_response(404, "route_not_found", exc.message)

    @app.exception_handler(HandlerTimeoutError)
    async def handle_timeout(request: Request, exc: HandlerTimeoutError):
        return _error_response(504, "handler_timeout", exc.message)

    @app.exception_handler(EncodingError)
    async def handle_encoding_error(request: Request, exc: EncodingError):
        logger.error("[%s] Response encoding failed: %s", request_id_var.get(""), exc.message)
        return _error_response(500, "internal_server_error", GENERIC_FAULT_MESSAGE)

    @app.exception_handler(UnhandledFault)
    async def handle_unhandled_fault(request: Request, exc: UnhandledFault):
        logger.error(
            "[%s] Unhandled fault in %s: %r",
            request_id_var.get(""),
            exc.endpoint,
            exc.cause,
        )
        return _error_response(500, "internal_server_error", GENERIC_FAULT_MESSAGE)

    @app.exception_handler(TypedApiError)
    async def handle_typed_api_error(request: Request, exc: TypedApiError):
        logger.error("[%s] %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", GENERIC_FAULT_MESSAGE)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            str(exc),
            exc_info=True,
        )
        return _error_response(500, "internal_server_error", GENERIC_FAULT_MESSAGE)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    api: HttpApi,
    table: DispatchTable,
    config: Optional[Settings] = None,
    upload_store: Optional[UploadStore] = None,
) -> FastAPI:
    """
    Create the FastAPI application serving `api` with the handlers of `table`.

    Args:
        api:          The API description (also fed to the OpenAPI builder)
        table:        Sealed dispatch table from HandlerTable.build()
        config:       Settings override (defaults to the module singleton)
        upload_store: Multipart storage override (used in tests)

    Raises:
        ValueError if the dispatch table was built for a different API.
    """
    config = config or default_settings
    if table.api is not api:
        raise ValueError(f"Dispatch table was built for '{table.api.name}', not '{api.name}'")

    store = upload_store or UploadStore(root=config.upload_root, max_size=config.max_upload_size)
    dispatcher = Dispatcher(table, upload_store=store, handler_timeout=config.handler_timeout_seconds)
    document = build_openapi(api, version=__version__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(config.log_level)
        logger.info("=" * 60)
        logger.info("%s starting up with %d endpoints", api.name, len(table))
        for route in table:
            logger.info("  %-7s %-28s → %s", route.endpoint.method, route.endpoint.path, route.name)

        Path(store.root).mkdir(parents=True, exist_ok=True)
        logger.info("Upload directory: %s", store.root)
        logger.info("Server ready at http://%s:%d", config.host, config.port)
        if config.docs_path:
            logger.info("API docs: http://%s:%d%s", config.host, config.port, config.docs_path)
        logger.info("=" * 60)

        yield

        logger.info("%s shutting down...", api.name)

    app = FastAPI(
        title=api.name,
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(
        RequestLoggingMiddleware,
        quiet_paths=(config.docs_path, config.openapi_path),
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # ── Documentation Routes ──────────────────────────────────────────────
    # Registered before the dispatcher so they take precedence over a
    # declared catch-all endpoint
    if config.openapi_path:
        async def openapi_document(request: Request) -> JSONResponse:
            return JSONResponse(document)

        app.add_route(config.openapi_path, openapi_document, methods=["GET"], include_in_schema=False)

        if config.docs_path:
            async def swagger_ui(request: Request):
                return get_swagger_ui_html(
                    openapi_url=config.openapi_path,
                    title=f"{api.name} - Swagger UI",
                )

            app.add_route(config.docs_path, swagger_ui, methods=["GET"], include_in_schema=False)

    # ── Declared Endpoints ────────────────────────────────────────────────
    app.add_route(
        "/{path:path}",
        dispatcher.dispatch,
        methods=list(HTTP_METHODS),
        include_in_schema=False,
    )

    app.state.api = api
    app.state.dispatch_table = table
    app.state.openapi_document = document
    return app


def serve(
    api: HttpApi,
    table: DispatchTable,
    host: Optional[str] = None,
    port: Optional[int] = None,
    config: Optional[Settings] = None,
) -> None:
    """
    Serve the API until the process receives SIGINT/SIGTERM.

    Build-time errors have already been raised by HandlerTable.build(), so
    no partially configured server ever starts listening.
    """
    config = config or default_settings
    app = create_app(api, table, config=config)
    uvicorn_config = uvicorn.Config(
        app,
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
    )
    uvicorn.Server(uvicorn_config).run()
