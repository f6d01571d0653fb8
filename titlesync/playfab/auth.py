from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Union

from titlesync.utils import parse_iso, utc_now

from .constants import ENDPOINT_LOGIN_EMAIL, ENDPOINT_LOGIN_GOOGLE, ENDPOINT_REGISTER_USER
from .errors import AuthError, RemoteApiError
from .events import info

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionToken:
    ticket: str
    playfab_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    def expired(self, now: Optional[datetime] = None) -> bool:
        """A token without a known expiry stays valid until the service rejects it (401)."""
        if not self.ticket:
            return True
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at


def session_from_login(data: Mapping[str, Any]) -> SessionToken:
    """
    Login responses carry:
      SessionTicket, PlayFabId, EntityToken: {EntityToken, TokenExpiration}
    """
    ticket = data.get("SessionTicket")
    if not ticket:
        raise AuthError("login response did not include a SessionTicket")
    entity = data.get("EntityToken") or {}
    expires = parse_iso(entity.get("TokenExpiration")) if isinstance(entity, dict) else None
    return SessionToken(ticket=str(ticket), playfab_id=data.get("PlayFabId"), expires_at=expires)


def _login(api: Any, endpoint: str, body: Dict[str, Any]) -> SessionToken:
    try:
        data = api.call(endpoint, body, authenticated=False)
    except RemoteApiError as e:
        raise AuthError(f"login rejected: {e}") from e
    token = session_from_login(data)
    info("auth.login.ok", endpoint=endpoint, playfab_id=token.playfab_id)
    return token


@dataclass(frozen=True)
class EmailPasswordLogin:
    email: str
    password: str

    method = "email"

    def authenticate(self, api: Any) -> SessionToken:
        if not self.email or not self.password:
            raise AuthError("Could not authenticate with PlayFab: missing email or password.")
        return _login(
            api,
            ENDPOINT_LOGIN_EMAIL,
            {"Email": self.email, "Password": self.password, "TitleId": api.title_id},
        )


@dataclass(frozen=True)
class GoogleAccountLogin:
    server_auth_code: Optional[str] = None
    access_token: Optional[str] = None
    create_account: bool = False

    method = "google"

    def authenticate(self, api: Any) -> SessionToken:
        body: Dict[str, Any] = {"TitleId": api.title_id, "CreateAccount": bool(self.create_account)}
        if self.server_auth_code:
            body["ServerAuthCode"] = self.server_auth_code
        if self.access_token:
            body["AccessToken"] = self.access_token
        return _login(api, ENDPOINT_LOGIN_GOOGLE, body)


LoginStrategy = Union[EmailPasswordLogin, GoogleAccountLogin]

LOGIN_METHODS = ("email", "google")


def strategy_from_config(cfg: Mapping[str, Any]) -> LoginStrategy:
    """
    Build the login strategy from the [sources.playfab] secrets block.
    login_method defaults to "email".
    """
    method = str(cfg.get("login_method") or "email").strip().lower()
    if method == "email":
        return EmailPasswordLogin(email=str(cfg.get("email") or ""), password=str(cfg.get("password") or ""))
    if method == "google":
        return GoogleAccountLogin(
            server_auth_code=cfg.get("google_server_auth_code") or None,
            access_token=cfg.get("google_access_token") or None,
            create_account=bool(cfg.get("google_create_account", False)),
        )
    raise AuthError(f"Unknown login_method {method!r} (expected one of: {', '.join(LOGIN_METHODS)})")


class TokenProvider:
    """
    Holds the current session for one principal. The session is fetched
    through `reauthenticate` when missing or expired, and dropped on
    invalidate() (the API layer calls it on a 401).
    """

    def __init__(
        self,
        reauthenticate: Callable[[], SessionToken],
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._reauthenticate = reauthenticate
        self._clock = clock
        self._token: Optional[SessionToken] = None

    @property
    def session(self) -> Optional[SessionToken]:
        return self._token

    @property
    def playfab_id(self) -> Optional[str]:
        return self._token.playfab_id if self._token else None

    def current_session_token(self) -> str:
        token = self._token
        if token is None or token.expired(self._clock()):
            logger.debug("Session missing or expired, re-authenticating")
            token = self._reauthenticate()
            if token is None or token.expired(self._clock()):
                raise AuthError("re-authentication did not produce a usable session")
            self._token = token
        return token.ticket

    def invalidate(self) -> None:
        if self._token is not None:
            logger.info("Session invalidated")
        self._token = None


def provider_for(api: Any, strategy: LoginStrategy, *, clock: Callable[[], datetime] = utc_now) -> TokenProvider:
    """Wire a TokenProvider that logs in through `api`, and attach it to `api`."""
    provider = TokenProvider(lambda: strategy.authenticate(api), clock=clock)
    api.token_provider = provider
    return provider


def register_user(api: Any, username: str, email: str, password: str) -> Dict[str, Any]:
    body = {
        "TitleId": api.title_id,
        "Username": username,
        "Email": email,
        "Password": password,
    }
    return api.call(ENDPOINT_REGISTER_USER, body, authenticated=False)
