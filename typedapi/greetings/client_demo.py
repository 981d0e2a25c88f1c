"""
Greetings Client Demo
=====================

Derives a client from MyApi and calls "hello-world" against a running
server (settings.client_base_url, http://localhost:3001 by default).

Run:
    python -m typedapi &                       # start the server
    python -m typedapi.greetings.client_demo
"""

import asyncio
import logging
import uuid
from typing import Optional

from typedapi.client import HttpApiClient
from typedapi.greetings.api import MyApi
from typedapi.server import setup_logging

logger = logging.getLogger(__name__)


async def run(base_url: Optional[str] = None, transport=None) -> str:
    """Call Greetings/hello-world once and log the decoded response."""
    async with HttpApiClient.make(MyApi, base_url=base_url, transport=transport) as client:
        greeting = await client.Greetings["hello-world"](
            headers={"X-API-Key": "demo-key", "X-Request-ID": uuid.uuid4().hex[:8]},
        )
    logger.info("hello-world → %s", greeting)
    return greeting


def main() -> None:
    setup_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
