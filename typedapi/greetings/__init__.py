"""
typedapi.greetings — Tutorial API
=================================

What: The `MyApi` example: one "Greetings" group showing headers, query
      parameters, path parameters, url-encoded and multipart payloads, a
      text/csv response, a no-content endpoint and a catch-all route.

    api.py          declarations (shared by server, client and docs)
    handlers.py     the handler table and its sealed dispatch table
    client_demo.py  derives a client and calls "hello-world"
"""
