"""Database layer for Tutorrito (SQLAlchemy 2.0 async)."""

from __future__ import annotations

from tutorrito.db.base import Base
from tutorrito.db.engine import DatabaseManager

__all__ = ["Base", "DatabaseManager"]
