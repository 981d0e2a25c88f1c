"""`python -m typedapi` serves the Greetings tutorial on settings.host:settings.port."""

from typedapi.greetings.api import MyApi
from typedapi.greetings.handlers import dispatch_table
from typedapi.server import serve

if __name__ == "__main__":
    serve(MyApi, dispatch_table)
