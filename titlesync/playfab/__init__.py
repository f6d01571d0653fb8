"""
PlayFab title-data integration and the caching engine built around it.

  from titlesync.playfab import TitleDataCache, TitleSyncSettings
"""
from __future__ import annotations

from .client import TitleDataCache
from .config import TitleSyncSettings, load_settings
from .errors import (
    AuthError,
    ConfigError,
    MalformedDocumentError,
    RemoteApiError,
    SchemaConflictError,
    StorageError,
    TitleSyncError,
    TransportError,
)
from .ledger import CallLedger, FreshnessMode

__all__ = [
    "AuthError",
    "CallLedger",
    "ConfigError",
    "FreshnessMode",
    "MalformedDocumentError",
    "RemoteApiError",
    "SchemaConflictError",
    "StorageError",
    "TitleDataCache",
    "TitleSyncError",
    "TitleSyncSettings",
    "TransportError",
    "load_settings",
]
