"""Shared declarative base for the billing tables (users, subscriptions, webhook and audit logs)."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Metadata root; Alembic autogenerate and SQLite dev startup both read ``Base.metadata``."""
