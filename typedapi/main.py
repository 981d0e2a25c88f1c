"""
typedapi — ASGI Entry Point
===========================

The Greetings tutorial as an ASGI application, for running under an
external server:

    uvicorn typedapi.main:app --port 3001
"""

from typedapi.greetings.api import MyApi
from typedapi.greetings.handlers import dispatch_table
from typedapi.server import create_app

app = create_app(MyApi, dispatch_table)
