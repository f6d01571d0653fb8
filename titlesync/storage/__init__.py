from __future__ import annotations

from .postgres import MAX_VARCHAR_WIDTH, PostgresBackend

__all__ = ["MAX_VARCHAR_WIDTH", "PostgresBackend"]
