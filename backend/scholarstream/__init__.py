"""
ScholarStream Backend - Application Package
============================================

What: Scholarship-application marketplace API (apply, pay, moderate, review).
Who:  Imported by uvicorn (``scholarstream.main:app``), Alembic and pytest.

Layering:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (policy, lifecycle,       │  ← Business rules
    │  reconciliation, provider client)   │
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy pool
    └─────────────────────────────────────┘

Routes stay thin; every decision about who may do what to an application, and
every paymentStatus write, lives in the services package.
"""

__version__ = "1.0.0"
