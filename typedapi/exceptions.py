"""
typedapi — Exception Hierarchy
===============================

What:  Every failure the declaration, dispatch and client layers can report.
Why:   Each failure kind maps to exactly one outcome: a build-time abort, an
       HTTP status on the server, or a typed failure on the client.
How:   Each exception carries a message and an optional context dict.
       The server's exception handlers (server.py) turn request-time errors
       into JSON responses; configuration errors abort startup.

Exception Hierarchy:
    TypedApiError (base)
    ├── ValidationError          → 400 Bad Request (input failed schema decode)
    ├── EncodingError            → 500 (handler output failed schema encode)
    ├── NoRouteFound             → 404 Not Found
    ├── HandlerError             → declared status (application-level error)
    ├── HandlerTimeoutError      → 504 Gateway Timeout
    ├── UnhandledFault           → 500 (undeclared handler failure)
    ├── ConfigurationError       → aborts startup, never reaches a request
    │   ├── DuplicateIdError
    │   ├── DuplicateHandlerError
    │   ├── IncompleteApiError
    │   ├── UnknownEndpointError
    │   ├── InvalidEndpointError
    │   └── HandlerTableSealedError
    └── ClientError              → raised by HttpApiClient calls
        ├── NetworkError
        ├── UnexpectedStatusError
        └── ApiErrorResponse
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple


class TypedApiError(Exception):
    """
    Base exception for all typedapi errors.

    Attributes:
        message:  Description safe to return in an API response
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


# ══════════════════════════════════════════════════════════════════════════
# Schema Errors
# ══════════════════════════════════════════════════════════════════════════


class ValidationError(TypedApiError):
    """
    Raised when a raw value fails to decode against a schema.

    HTTP:    400 Bad Request

    Attributes:
        issues:   One entry per failing field:
                  {"path": "page", "message": "...", "type": "number_from_string"}
        location: Which part of the request failed ("path", "query",
                  "headers", "payload") or None outside a request.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        issues: Optional[List[Dict[str, Any]]] = None,
        location: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.issues = list(issues or [])
        self.location = location
        ctx = context or {}
        if location:
            ctx["location"] = location
        super().__init__(message=message, context=ctx)

    @property
    def fields(self) -> List[str]:
        """Dotted paths of every failing field, in report order."""
        return [issue["path"] for issue in self.issues]

    def at(self, location: str) -> "ValidationError":
        """Return a copy of this error tagged with the request location."""
        return ValidationError(
            message=f"Invalid {location}: {self.message}",
            issues=self.issues,
            location=location,
            context=dict(self.context),
        )


class EncodingError(TypedApiError):
    """
    Raised when a typed value cannot be encoded against its schema.

    On the server this means the handler returned something other than
    what its endpoint declares: an implementation bug, answered with a 500.
    On the client it means the call input does not fit the declaration.
    """

    def __init__(
        self,
        message: str = "Value does not match the declared schema",
        path: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if path:
            ctx["path"] = path
        super().__init__(message=message, context=ctx)
        self.path = path


# ══════════════════════════════════════════════════════════════════════════
# Request-Time Errors
# ══════════════════════════════════════════════════════════════════════════


class NoRouteFound(TypedApiError):
    """
    Raised when no declared endpoint matches the request method and path.

    HTTP:    404 Not Found
    """

    def __init__(self, method: str, path: str):
        super().__init__(
            message=f"No route found for {method} {path}",
            context={"method": method, "path": path},
        )
        self.method = method
        self.path = path


class HandlerError(TypedApiError):
    """
    Raised by a handler to return one of its endpoint's declared errors.

    The dispatcher encodes `value` against the first declared error schema
    that accepts it (restricted to `status` when given) and responds with
    that schema's status. An error no declared schema accepts is treated
    as an UnhandledFault.

    Example:
        raise HandlerError({"reason": "user is archived"}, status=409)
    """

    def __init__(self, value: Any, status: Optional[int] = None):
        super().__init__(
            message="Handler returned a declared error",
            context={"status": status},
        )
        self.value = value
        self.status = status


class HandlerTimeoutError(TypedApiError):
    """
    Raised when a handler exceeds settings.handler_timeout_seconds.

    HTTP:    504 Gateway Timeout
    """

    def __init__(self, endpoint: str, timeout: float):
        super().__init__(
            message=f"The request did not complete within {timeout:g} seconds",
            context={"endpoint": endpoint, "timeout": timeout},
        )
        self.timeout = timeout


class UnhandledFault(TypedApiError):
    """
    Raised when a handler fails in a way its endpoint does not declare.

    HTTP:    500 Internal Server Error
    Security: The response body is generic; the original exception is kept
              in `cause` and logged server-side only.
    """

    def __init__(self, endpoint: str, cause: BaseException):
        super().__init__(
            message="An unexpected error occurred. Please try again or contact support.",
            context={"endpoint": endpoint, "error_type": type(cause).__name__},
        )
        self.endpoint = endpoint
        self.cause = cause


# ══════════════════════════════════════════════════════════════════════════
# Build-Time Errors
# ══════════════════════════════════════════════════════════════════════════


class ConfigurationError(TypedApiError):
    """
    Base class for declaration and handler-binding mistakes.

    Raised while descriptors and the dispatch table are being built, so a
    misconfigured API never starts serving.
    """


class DuplicateIdError(ConfigurationError):
    """An endpoint id is reused within a group, or a group name within an API."""

    def __init__(self, kind: str, name: str, owner: str):
        super().__init__(
            message=f"Duplicate {kind} '{name}' in '{owner}'",
            context={"kind": kind, "name": name, "owner": owner},
        )
        self.kind = kind
        self.name = name
        self.owner = owner


class DuplicateHandlerError(ConfigurationError):
    """A second handler is registered for the same (group, endpoint) pair."""

    def __init__(self, group: str, endpoint: str):
        super().__init__(
            message=f"A handler for '{group}.{endpoint}' is already registered",
            context={"group": group, "endpoint": endpoint},
        )
        self.group = group
        self.endpoint = endpoint


class IncompleteApiError(ConfigurationError):
    """
    build() found declared endpoints without a handler.

    Attributes:
        missing: Every (group, endpoint id) pair lacking a handler, in
                 declaration order.
    """

    def __init__(self, api: str, missing: Sequence[Tuple[str, str]]):
        self.missing = list(missing)
        listed = ", ".join(f"{group}.{endpoint}" for group, endpoint in self.missing)
        super().__init__(
            message=f"API '{api}' has endpoints without handlers: {listed}",
            context={"api": api, "missing": self.missing},
        )


class UnknownEndpointError(ConfigurationError):
    """A handler is registered for a (group, endpoint) pair the API does not declare."""

    def __init__(self, group: str, endpoint: str):
        super().__init__(
            message=f"'{group}.{endpoint}' is not declared by the API",
            context={"group": group, "endpoint": endpoint},
        )


class InvalidEndpointError(ConfigurationError):
    """An endpoint declaration contradicts itself (path schema, duplicate status, ...)."""

    def __init__(self, endpoint: str, reason: str):
        super().__init__(
            message=f"Invalid endpoint '{endpoint}': {reason}",
            context={"endpoint": endpoint},
        )


class HandlerTableSealedError(ConfigurationError):
    """register() was called after build() sealed the table."""

    def __init__(self, group: str, endpoint: str):
        super().__init__(
            message=f"Cannot register '{group}.{endpoint}': the handler table is already built",
            context={"group": group, "endpoint": endpoint},
        )


# ══════════════════════════════════════════════════════════════════════════
# Client Errors
# ══════════════════════════════════════════════════════════════════════════


class ClientError(TypedApiError):
    """Base class for failures reported by HttpApiClient calls."""


class NetworkError(ClientError):
    """
    The request never produced an HTTP response.

    Wraps connection refusals, DNS failures, timeouts and other httpx
    transport errors. Kept apart from validation failures so callers can
    retry on one and not the other.
    """

    def __init__(self, method: str, url: str, cause: BaseException):
        super().__init__(
            message=f"{method} {url} failed: {cause}",
            context={"method": method, "url": url, "error_type": type(cause).__name__},
        )
        self.cause = cause


class UnexpectedStatusError(ClientError):
    """The server answered with a status the endpoint does not declare."""

    def __init__(self, status: int, body: Any):
        super().__init__(
            message=f"Unexpected response status {status}",
            context={"status": status},
        )
        self.status = status
        self.body = body


class ApiErrorResponse(ClientError):
    """
    The server answered with one of the endpoint's declared errors.

    Attributes:
        status: HTTP status code of the response
        value:  Body decoded against the matching error schema
    """

    def __init__(self, status: int, value: Any):
        super().__init__(
            message=f"Endpoint returned declared error (status {status})",
            context={"status": status},
        )
        self.status = status
        self.value = value
