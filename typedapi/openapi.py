"""
typedapi — OpenAPI Document Derivation
=======================================

What:  Builds an OpenAPI 3.1 document from an HttpApi description.
Why:   Documentation is derived from the same declaration the server and
       client use, so it cannot drift from what is actually served.
How:   One operation per endpoint; parameters from the path/query/header
       structs, request body from the payload encoding, one response per
       declared success/error status, plus the framework's 400 decode error.
Who:   server.create_app() serves the result at settings.openapi_path and
       points FastAPI's Swagger UI page at it.
"""

from typing import Any, Dict, List, Optional

from typedapi.endpoint import HttpApiEndpoint, ResponseSpec
from typedapi.registry import HttpApi, HttpApiGroup
from typedapi.responses import ErrorResponse
from typedapi.schema import Schema

OPENAPI_VERSION = "3.1.0"


def _parameters(location: str, schema: Optional[Schema]) -> List[Dict[str, Any]]:
    if schema is None:
        return []
    parameters = []
    for name, field_schema in schema.fields:
        if location == "path" and name == "*":
            continue
        parameter: Dict[str, Any] = {
            "name": name,
            "in": location,
            "required": location == "path" or not field_schema.is_optional,
            "schema": field_schema.json_schema(),
        }
        if field_schema.description:
            parameter["description"] = field_schema.description
        if location == "query" and field_schema.accepts_many:
            parameter["style"] = "form"
            parameter["explode"] = True
        parameters.append(parameter)
    return parameters


def _catch_all_parameter(endpoint: HttpApiEndpoint) -> List[Dict[str, Any]]:
    if not endpoint.path.has_catch_all:
        return []
    return [{
        "name": "*",
        "in": "path",
        "required": True,
        "schema": {"type": "string"},
        "description": "Remaining path",
    }]


def _content(schema: Schema) -> Dict[str, Any]:
    return {schema.encoding.content_type: {"schema": schema.json_schema()}}


def _responses(endpoint: HttpApiEndpoint) -> Dict[str, Any]:
    responses: Dict[str, Any] = {}

    successes = endpoint.successes or (endpoint.success,)
    for spec in successes:
        responses[str(spec.status)] = _response("Success", spec)

    grouped: Dict[int, List[ResponseSpec]] = {}
    for spec in endpoint.errors:
        grouped.setdefault(spec.status, []).append(spec)
    for status, specs in grouped.items():
        if len(specs) == 1:
            responses[str(status)] = _response("Error", specs[0])
            continue
        # Several error schemas on one status: one anyOf per content type
        content: Dict[str, Any] = {}
        for spec in specs:
            for content_type, media in _content(spec.schema).items():
                content.setdefault(content_type, {"schema": {"anyOf": []}})
                content[content_type]["schema"]["anyOf"].append(media["schema"])
        responses[str(status)] = {"description": "Error", "content": content}

    responses.setdefault("400", {
        "description": "The request did not match the declared schemas",
        "content": {"application/json": {"schema": ErrorResponse.model_json_schema()}},
    })
    return responses


def _response(description: str, spec: ResponseSpec) -> Dict[str, Any]:
    response: Dict[str, Any] = {"description": (spec.schema and spec.schema.description) or description}
    if spec.schema is not None:
        response["content"] = _content(spec.schema)
    return response


def build_operation(group: HttpApiGroup, endpoint: HttpApiEndpoint) -> Dict[str, Any]:
    operation: Dict[str, Any] = {
        "tags": [group.name],
        "operationId": f"{group.name}.{endpoint.id}",
        "parameters": (
            _parameters("path", endpoint.path_schema)
            + _catch_all_parameter(endpoint)
            + _parameters("query", endpoint.query_schema)
            + _parameters("header", endpoint.headers_schema)
        ),
        "responses": _responses(endpoint),
    }
    if endpoint.summary:
        operation["summary"] = endpoint.summary
    if endpoint.description:
        operation["description"] = endpoint.description
    if endpoint.payload_schema is not None:
        operation["requestBody"] = {
            "required": True,
            "content": _content(endpoint.payload_schema),
        }
    return operation


def build_openapi(api: HttpApi, version: str = "1.0.0", description: Optional[str] = None) -> Dict[str, Any]:
    """
    Derive the OpenAPI document of an API.

    Two endpoints on the same path with different methods share one path
    item; the first declaration of a (path, method) pair is documented,
    matching which one the dispatcher would route to.
    """
    paths: Dict[str, Dict[str, Any]] = {}
    for group, endpoint in api.iter_endpoints():
        item = paths.setdefault(endpoint.path.to_openapi(), {})
        method = endpoint.method.lower()
        if method not in item:
            item[method] = build_operation(group, endpoint)

    info: Dict[str, Any] = {"title": api.name, "version": version}
    if description:
        info["description"] = description

    tags = []
    for group in api.groups:
        tag: Dict[str, Any] = {"name": group.name}
        if group.description:
            tag["description"] = group.description
        tags.append(tag)

    return {
        "openapi": OPENAPI_VERSION,
        "info": info,
        "tags": tags,
        "paths": paths,
    }
