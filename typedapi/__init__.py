"""
typedapi — Package Initializer
==============================

What: Declarative, schema-typed HTTP APIs: one description drives the
      server, the derived client and the OpenAPI document.
Who:  Imported as `typedapi.<module>`; the Greetings tutorial lives in
      `typedapi.greetings` and `python -m typedapi` serves it.

Architecture Note:
    ┌─────────────────────────────────────┐
    │  schema.py     (Schema Validator)   │  ← decode / encode, pydantic-backed
    ├─────────────────────────────────────┤
    │  endpoint.py   (Endpoint Descriptor)│  ← method, path template, schemas
    │  registry.py   (Group / API)        │  ← immutable composition
    ├─────────────────────────────────────┤
    │  dispatcher.py (Handler Dispatcher) │  ← checked handler table, per-request pipeline
    │  server.py     (FastAPI app)        │  ← middleware, error mapping, docs, uvicorn
    ├─────────────────────────────────────┤
    │  client.py     (Client Factory)     │  ← httpx client derived from the same API
    │  openapi.py    (Documentation)      │  ← OpenAPI 3.1 derived from the same API
    └─────────────────────────────────────┘

    Declarations never change after construction, so the server, the
    client and the documentation cannot disagree about an endpoint.
"""

__version__ = "1.0.0"
