"""Database package: Engine handle, declarative base, and schema provisioning."""

from plan_engine.db.base import Base, Database, create_engine_from_url
from plan_engine.db.schema import drop_schema, ensure_schema

__all__ = [
    "Base",
    "Database",
    "create_engine_from_url",
    "drop_schema",
    "ensure_schema",
]
