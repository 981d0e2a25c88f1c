"""
typedapi — Middleware Package
==============================

What:  Cross-cutting concerns applied to every request, declared endpoint or not.

Middleware Chain (order matters!):
    Request → [Request ID] → [Logging] → [CORS] → Docs routes / Dispatcher

    1. Request ID: Generate (or accept) the correlation ID first
    2. Logging: Log request details with the request ID attached
    3. CORS: Applied by Starlette's CORSMiddleware (handles preflight)
"""
