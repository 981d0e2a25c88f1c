"""
Greetings API Declarations
==========================

What:  The endpoint descriptors of the tutorial API.
Who:   Imported by greetings.handlers (server side), greetings.client_demo
       (client side) and the OpenAPI document; nothing here talks HTTP.

Endpoints (declaration order is match order):
    GET    /                       hello-world            headers X-API-Key, X-Request-ID
    GET    /users                  users                  ?page=1&sort=asc&friend=a&friend=b → 206
    GET    /param/optionOne/:id    pass-param-option-one  path schema via with_path()
    GET    /params/optionTwo/:id   pass-param-option-two  path schema via param()
    POST   /post                   post                   url-encoded {name}
    DELETE /delete/:id             delete                 text/csv response
    PATCH  /patch/:id              patch/update           no success schema → 204
    GET    /*                      catchAll               any other GET path
    POST   /upload                 upload                 multipart "files"
"""

from typedapi.endpoint import HttpApiEndpoint, param
from typedapi.registry import HttpApi, HttpApiGroup
from typedapi.schema import (
    TEXT,
    URL_PARAMS,
    Array,
    DateTimeUtc,
    Files,
    Multipart,
    NonEmptyTrimmedString,
    Number,
    NumberFromString,
    String,
    Struct,
    UndefinedOr,
)

User = Struct(
    {
        "name": NonEmptyTrimmedString,
        "id": Number,
        "createdAt": DateTimeUtc,
    },
    title="User",
)

IdPath = Struct({"id": NumberFromString})

option_two_param = param("id", NumberFromString)

Greetings = (
    HttpApiGroup.make("Greetings")
    .add(
        HttpApiEndpoint.get("hello-world", "/")
        .with_headers(Struct({
            "X-API-Key": String,
            "X-Request-ID": String.annotate(description="Unique identifier for the request"),
        }))
        .add_success(String)
    )
    .add(
        HttpApiEndpoint.get("users", "/users")
        # /users?page=1&sort=asc&friend=tom&friend=jensen
        .with_query(Struct({
            "page": NumberFromString,
            "sort": UndefinedOr(String.annotate(description="Sorting criteria")),
            "friend": UndefinedOr(Array(String)),
        }))
        .add_success(Array(User), status=206)
    )
    .add(
        HttpApiEndpoint.get("pass-param-option-one", "/param/optionOne/:id")
        .with_path(IdPath)
        .add_success(String)
    )
    .add(
        HttpApiEndpoint.get("pass-param-option-two", "/params/optionTwo/", option_two_param)
        .add_success(String)
    )
    .add(
        HttpApiEndpoint.post("post", "/post")
        .with_payload(Struct({"name": String}).with_encoding(URL_PARAMS))
        .add_success(String)
    )
    .add(
        HttpApiEndpoint.delete("delete", "/delete/:id")
        .with_path(IdPath)
        .add_success(String.with_encoding(TEXT, "text/csv"))
    )
    .add(
        HttpApiEndpoint.patch("patch/update", "/patch/:id")
        .with_path(IdPath)
    )
    .add(
        HttpApiEndpoint.get("catchAll", "/*")
        .add_success(String)
    )
    .add(
        HttpApiEndpoint.post("upload", "/upload")
        .with_payload(Multipart(Struct({"files": Files})))
        .add_success(String)
    )
)

MyApi = HttpApi.make("MyApi").add(Greetings)
