"""
typedapi — Endpoint Descriptor
===============================

What:  Immutable declaration of one route: method, path template, and the
       schemas for path, query, headers, payload, successes and errors.
Why:   The same declaration drives server dispatch, the OpenAPI document and
       the derived client, so it must be shareable and never change after
       construction.
How:   Frozen dataclasses. Every builder (with_path, add_success, ...) returns
       a new descriptor through dataclasses.replace(); nothing is mutated.

Path templates:
    "/users"                literal segments match exactly (case-sensitive)
    "/delete/:id"           ":id" binds one segment to the path schema field "id"
    "/*"                    a trailing "*" binds the remaining suffix (possibly
                            empty) under the key "*"
    Matching is segment-count aware: "/users" never matches "/users/42".
    A single trailing slash on the request path is ignored.

Example:
    HttpApiEndpoint.get("pass-param-option-one", "/param/optionOne/:id")
        .with_path(Struct({"id": NumberFromString}))
        .add_success(String)

    # parameter schema declared inline with the template
    HttpApiEndpoint.get("pass-param-option-two", "/params/optionTwo/", param("id", NumberFromString))
"""

from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from typedapi.exceptions import InvalidEndpointError
from typedapi.schema import JSON, MULTIPART, URL_PARAMS, Schema, String, Struct

GET = "GET"
POST = "POST"
PUT = "PUT"
PATCH = "PATCH"
DELETE = "DELETE"
HEAD = "HEAD"
OPTIONS = "OPTIONS"

HTTP_METHODS = (GET, POST, PUT, PATCH, DELETE, HEAD, OPTIONS)

CATCH_ALL = "*"

DEFAULT_SUCCESS_STATUS = 200
DEFAULT_ERROR_STATUS = 500
NO_CONTENT_STATUS = 204


@dataclass(frozen=True)
class PathParam:
    """A named path parameter declared inline, carrying its schema."""

    name: str
    schema: Schema

    def __str__(self) -> str:
        return f":{self.name}"


def param(name: str, schema: Schema) -> PathParam:
    return PathParam(name=name, schema=schema)


def _split(path: str) -> Tuple[str, ...]:
    if path.endswith("/") and path != "/":
        path = path[:-1]
    stripped = path.lstrip("/")
    return tuple(stripped.split("/")) if stripped else ()


@dataclass(frozen=True)
class PathTemplate:
    """Parsed path template: literal segments, ":name" parameters, optional trailing "*"."""

    template: str
    segments: Tuple[str, ...]

    @classmethod
    def parse(cls, template: str) -> "PathTemplate":
        if not template.startswith("/"):
            raise ValueError(f"Path template '{template}' must start with '/'")
        segments = _split(template)
        names = []
        for index, segment in enumerate(segments):
            if segment == CATCH_ALL and index != len(segments) - 1:
                raise ValueError(f"Catch-all '*' must be the last segment of '{template}'")
            if segment.startswith(":"):
                name = segment[1:]
                if not name:
                    raise ValueError(f"Empty parameter name in '{template}'")
                if name in names:
                    raise ValueError(f"Parameter ':{name}' appears twice in '{template}'")
                names.append(name)
        return cls(template=template, segments=segments)

    @property
    def params(self) -> Tuple[str, ...]:
        """Names of the ":name" parameters, in order."""
        return tuple(segment[1:] for segment in self.segments if segment.startswith(":"))

    @property
    def has_catch_all(self) -> bool:
        return bool(self.segments) and self.segments[-1] == CATCH_ALL

    def match(self, path: str) -> Optional[Dict[str, str]]:
        """
        Match a request path.

        Returns:
            Raw (string) parameter values keyed by name, or None when the path
            does not match.
        """
        parts = _split(path)
        values: Dict[str, str] = {}
        for index, segment in enumerate(self.segments):
            if segment == CATCH_ALL:
                values[CATCH_ALL] = "/".join(parts[index:])
                return values
            if index >= len(parts):
                return None
            if segment.startswith(":"):
                if not parts[index]:
                    return None
                values[segment[1:]] = parts[index]
            elif segment != parts[index]:
                return None
        if len(parts) != len(self.segments):
            return None
        return values

    def resolve(self, values: Mapping[str, object]) -> str:
        """
        Build a concrete path from parameter values (client side).

        Raises:
            KeyError naming the first parameter without a value.
        """
        parts = []
        for segment in self.segments:
            if segment == CATCH_ALL:
                parts.append(quote(str(values.get(CATCH_ALL, "")), safe="/"))
            elif segment.startswith(":"):
                parts.append(quote(str(values[segment[1:]]), safe=""))
            else:
                parts.append(segment)
        return "/" + "/".join(parts)

    def with_prefix(self, prefix: str) -> "PathTemplate":
        prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
        if not prefix:
            return self
        return PathTemplate.parse(prefix + (self.template if self.template != "/" else ""))

    def to_openapi(self) -> str:
        """OpenAPI form: ":id" → "{id}", "*" → "{*}"."""
        parts = []
        for segment in self.segments:
            if segment == CATCH_ALL:
                parts.append("{*}")
            elif segment.startswith(":"):
                parts.append("{" + segment[1:] + "}")
            else:
                parts.append(segment)
        return "/" + "/".join(parts)

    def __str__(self) -> str:
        return self.template


@dataclass(frozen=True)
class ResponseSpec:
    """A declared response: status code plus the schema of its body (None = empty body)."""

    status: int
    schema: Optional[Schema]


@dataclass(frozen=True)
class HttpApiEndpoint:
    """
    Immutable endpoint declaration.

    Build with the method constructors (get, post, ...) and the with_* /
    add_* builders; each builder returns a new descriptor.

    An endpoint without a declared success answers 204 No Content.
    """

    id: str
    method: str
    path: PathTemplate
    path_schema: Optional[Schema] = None
    query_schema: Optional[Schema] = None
    headers_schema: Optional[Schema] = None
    payload_schema: Optional[Schema] = None
    successes: Tuple[ResponseSpec, ...] = ()
    errors: Tuple[ResponseSpec, ...] = ()
    summary: Optional[str] = None
    description: Optional[str] = None

    # ── Constructors ──────────────────────────────────────────────────────

    @classmethod
    def make(cls, method: str, endpoint_id: str, path: str, *parts: Union[str, PathParam]) -> "HttpApiEndpoint":
        method = method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method '{method}'")
        if not endpoint_id:
            raise ValueError("Endpoint id must not be empty")
        template = PathTemplate.parse(path + "".join(str(part) for part in parts))
        inline = [part for part in parts if isinstance(part, PathParam)]
        path_schema = Struct({p.name: p.schema for p in inline}) if inline else None
        return cls(id=endpoint_id, method=method, path=template, path_schema=path_schema)

    @classmethod
    def get(cls, endpoint_id: str, path: str, *parts: Union[str, PathParam]) -> "HttpApiEndpoint":
        return cls.make(GET, endpoint_id, path, *parts)

    @classmethod
    def post(cls, endpoint_id: str, path: str, *parts: Union[str, PathParam]) -> "HttpApiEndpoint":
        return cls.make(POST, endpoint_id, path, *parts)

    @classmethod
    def put(cls, endpoint_id: str, path: str, *parts: Union[str, PathParam]) -> "HttpApiEndpoint":
        return cls.make(PUT, endpoint_id, path, *parts)

    @classmethod
    def patch(cls, endpoint_id: str, path: str, *parts: Union[str, PathParam]) -> "HttpApiEndpoint":
        return cls.make(PATCH, endpoint_id, path, *parts)

    @classmethod
    def delete(cls, endpoint_id: str, path: str, *parts: Union[str, PathParam]) -> "HttpApiEndpoint":
        return cls.make(DELETE, endpoint_id, path, *parts)

    @classmethod
    def head(cls, endpoint_id: str, path: str, *parts: Union[str, PathParam]) -> "HttpApiEndpoint":
        return cls.make(HEAD, endpoint_id, path, *parts)

    @classmethod
    def options(cls, endpoint_id: str, path: str, *parts: Union[str, PathParam]) -> "HttpApiEndpoint":
        return cls.make(OPTIONS, endpoint_id, path, *parts)

    # ── Builders ──────────────────────────────────────────────────────────

    def with_path(self, schema: Schema) -> "HttpApiEndpoint":
        self._require_struct(schema, "path")
        return replace(self, path_schema=schema)

    def with_query(self, schema: Schema) -> "HttpApiEndpoint":
        self._require_struct(schema, "query")
        return replace(self, query_schema=schema)

    def with_headers(self, schema: Schema) -> "HttpApiEndpoint":
        self._require_struct(schema, "headers")
        return replace(self, headers_schema=schema)

    def with_payload(self, schema: Schema) -> "HttpApiEndpoint":
        if self.method in (GET, HEAD):
            raise InvalidEndpointError(self.id, f"{self.method} endpoints cannot declare a payload")
        if schema.encoding.kind in (URL_PARAMS, MULTIPART):
            self._require_struct(schema, "payload")
        return replace(self, payload_schema=schema)

    def add_success(self, schema: Optional[Schema] = None, status: int = DEFAULT_SUCCESS_STATUS) -> "HttpApiEndpoint":
        """
        Declare a success response.

        The first declared success is the one the dispatcher encodes handler
        results with. Further successes must use distinct status codes.
        """
        if not 200 <= status < 300:
            raise InvalidEndpointError(self.id, f"success status {status} is not a 2xx code")
        if any(spec.status == status for spec in self.successes):
            raise InvalidEndpointError(self.id, f"success status {status} is declared twice")
        return replace(self, successes=self.successes + (ResponseSpec(status, schema),))

    def add_error(self, schema: Schema, status: int = DEFAULT_ERROR_STATUS) -> "HttpApiEndpoint":
        """Declare an error response; several errors may share a status code."""
        if not 400 <= status < 600:
            raise InvalidEndpointError(self.id, f"error status {status} is not a 4xx/5xx code")
        return replace(self, errors=self.errors + (ResponseSpec(status, schema),))

    def annotate(self, summary: Optional[str] = None, description: Optional[str] = None) -> "HttpApiEndpoint":
        return replace(
            self,
            summary=summary if summary is not None else self.summary,
            description=description if description is not None else self.description,
        )

    def with_prefix(self, prefix: str) -> "HttpApiEndpoint":
        return replace(self, path=self.path.with_prefix(prefix))

    # ── Queries ───────────────────────────────────────────────────────────

    @property
    def success(self) -> ResponseSpec:
        """The primary success response (204 with no body when none is declared)."""
        if self.successes:
            return self.successes[0]
        return ResponseSpec(NO_CONTENT_STATUS, None)

    def success_for(self, status: int) -> Optional[ResponseSpec]:
        for spec in self.successes or (self.success,):
            if spec.status == status:
                return spec
        return None

    def errors_for(self, status: int) -> Tuple[ResponseSpec, ...]:
        return tuple(spec for spec in self.errors if spec.status == status)

    @property
    def payload_encoding(self) -> str:
        return self.payload_schema.encoding.kind if self.payload_schema else JSON

    def checked(self) -> "HttpApiEndpoint":
        """
        Validate the declaration and fill in implied parts.

        Called when the endpoint joins a group. Path parameters of an
        endpoint without a path schema are declared as String fields;
        an explicit path schema must declare every template parameter.
        A catch-all suffix is always available as the String field "*".

        Raises:
            InvalidEndpointError when a template parameter has no field.
        """
        params = self.path.params
        if not params and not self.path.has_catch_all:
            return self
        if self.path_schema is None:
            fields = {name: String for name in params}
            if self.path.has_catch_all:
                fields[CATCH_ALL] = String
            return replace(self, path_schema=Struct(fields))
        missing = [name for name in params if name not in self.path_schema.field_names]
        if missing:
            raise InvalidEndpointError(
                self.id,
                f"path parameters {missing} of '{self.path}' have no field in the path schema",
            )
        if self.path.has_catch_all and CATCH_ALL not in self.path_schema.field_names:
            schema = replace(self.path_schema, fields=self.path_schema.fields + ((CATCH_ALL, String),))
            return replace(self, path_schema=schema)
        return self

    def _require_struct(self, schema: Schema, part: str) -> None:
        if schema.kind != "struct":
            raise InvalidEndpointError(self.id, f"{part} schema must be a Struct")
