"""
Greetings Handlers
==================

What:  One handler per Greetings endpoint, collected in a HandlerTable.
How:   `dispatch_table = table.build()` runs at import time, so a missing
       handler fails the import (and therefore startup), not a request.
"""

import logging
from datetime import datetime, timezone

from typedapi.dispatcher import HandlerRequest, HandlerTable
from typedapi.greetings.api import MyApi

logger = logging.getLogger(__name__)

# Captured once at import; returned as every user's createdAt
STARTED_AT = datetime.now(timezone.utc)

table = HandlerTable(MyApi)


@table.handles("Greetings", "hello-world")
async def hello_world(request: HandlerRequest) -> str:
    logger.debug("hello-world called with request id %s", request.headers.x_request_id)
    return "Hello World"


@table.handles("Greetings", "users")
async def users(request: HandlerRequest) -> list:
    return [{"name": "James", "id": 123, "createdAt": STARTED_AT}]


@table.handles("Greetings", "pass-param-option-one")
async def pass_param_option_one(request: HandlerRequest) -> str:
    return "Passing params Option one"


@table.handles("Greetings", "pass-param-option-two")
async def pass_param_option_two(request: HandlerRequest) -> str:
    return "Passing params Option two"


@table.handles("Greetings", "post")
async def post(request: HandlerRequest) -> str:
    return "Post"


@table.handles("Greetings", "delete")
async def delete(request: HandlerRequest) -> str:
    return "Del"


@table.handles("Greetings", "patch/update")
async def patch_update(request: HandlerRequest) -> str:
    # Declares no success schema: the value is discarded and 204 is sent
    return "Patch"


@table.handles("Greetings", "catchAll")
async def catch_all(request: HandlerRequest) -> str:
    return "Catch All"


@table.handles("Greetings", "upload")
async def upload(request: HandlerRequest) -> str:
    for part in request.payload.files:
        logger.info("Received %s (%s, %d bytes)", part.name, part.content_type, part.size)
    return "Uploaded"


dispatch_table = table.build()
