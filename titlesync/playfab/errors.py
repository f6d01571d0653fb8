from __future__ import annotations

from typing import Optional


class TitleSyncError(Exception):
    pass


class TransportError(TitleSyncError):
    """Network failure reaching the remote service. Nothing is synced."""


class RemoteApiError(TitleSyncError):
    def __init__(
        self,
        status_code: int,
        error: str = "",
        message: str = "",
        error_code: Optional[int] = None,
        endpoint: str = "",
    ):
        self.status_code = int(status_code)
        self.error = error
        self.message = message
        self.error_code = error_code
        self.endpoint = endpoint
        text = f"{endpoint} returned {self.status_code}"
        if error:
            text += f": {error}"
        if message:
            text += f", {message}"
        if error_code is not None:
            text += f" [{error_code}]"
        super().__init__(text)

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401


class AuthError(TitleSyncError):
    """Missing or unusable login credentials."""


class StorageError(TitleSyncError):
    """Backend unavailable or write rejected."""


class SchemaConflictError(StorageError):
    """A concurrent DDL race (table/column created or altered by someone else)."""


class MalformedDocumentError(TitleSyncError):
    """A document or field value that cannot be turned into storable text."""


class ConfigError(TitleSyncError):
    pass
