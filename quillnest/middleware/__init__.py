# Middleware package init
"""
Quillnest Backend — Middleware Package
========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    1. Rate Limit first: abusive clients are rejected before any other work,
       with a stricter bucket for the credential endpoints
    2. Request ID: correlation ID for logs, error bodies and the response header
    3. Logging: method, path, status and duration, tagged with the request ID

    Authentication is NOT middleware: it is the `get_current_identity`
    dependency (quillnest/dependencies.py), attached per route.
"""
