"""
Quillnest Backend — Application Package Initializer
===================================================

What: Marks the `quillnest` directory as a Python package.
Who:  Imported by uvicorn (`quillnest.main:app`), Alembic and pytest.

Architecture Note:
    The backend is layered:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Dependencies (auth/admin gates)   │  ← Bearer token → Identity
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Auth flows, posts, comments
    ├─────────────────────────────────────┤
    │   Ports (media host, mail sender)   │  ← Cloudinary, SendGrid
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Services are constructed once in `create_app()` and handed their
    collaborators explicitly; routes receive them through FastAPI's
    dependency injection.
"""

__version__ = "1.0.0"
