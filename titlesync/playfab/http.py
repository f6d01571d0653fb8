from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Protocol, Tuple

import requests

from titlesync.utils import DEFAULT_TIMEOUT, requests_retry_session

from .constants import AUTH_HEADER, PLAYFAB_BASE_URL, SUCCESS_STATUS
from .errors import AuthError, RemoteApiError, TransportError
from .events import http_error, http_ok, http_start
from .ledger import CallLedger
from .normalization import normalize_endpoint
from .ratelimit import AdaptiveRateLimiter

logger = logging.getLogger(__name__)


class SessionTokenSource(Protocol):
    def current_session_token(self) -> str:
        ...

    def invalidate(self) -> None:
        ...


def base_url_for(title_id: str) -> str:
    tid = (title_id or "").strip()
    if not tid:
        raise ValueError("title_id is required")
    return PLAYFAB_BASE_URL.replace("titleId", tid)


def envelope_status(http_status: int, parsed: Any) -> int:
    """
    PlayFab mirrors the HTTP status in the envelope's "code"; prefer it when
    present so the ledger sees what the service reported.
    """
    if isinstance(parsed, dict) and parsed.get("code") is not None:
        try:
            return int(parsed["code"])
        except (TypeError, ValueError):
            pass
    return int(http_status or 0)


class PlayFabTransport:
    """
    Plain JSON-over-POST transport. Knows nothing about throttling, the
    ledger, or sessions; those live in PlayFabApi.
    """

    def __init__(
        self,
        title_id: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
    ):
        self.title_id = title_id
        self.base_url = base_url_for(title_id)
        self.session = session or requests_retry_session()
        self.timeout = timeout

    def url_for(self, endpoint: str) -> str:
        return self.base_url.rstrip("/") + normalize_endpoint(endpoint)

    def fetch(self, endpoint: str, headers: Dict[str, str], body: Optional[Dict[str, Any]]) -> Tuple[int, Any]:
        """Returns (http_status, parsed_json_or_None). Raises TransportError on network failure."""
        h = {"Content-Type": "application/json", "Accept": "application/json"}
        h.update(headers or {})
        try:
            r = self.session.post(
                self.url_for(endpoint),
                headers=h,
                data=json.dumps(body or {}),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{endpoint}: {type(e).__name__}: {e}") from e

        if not r.content:
            return r.status_code, None
        try:
            return r.status_code, r.json()
        except ValueError:
            logger.warning(f"{endpoint} returned non-JSON body (status {r.status_code})")
            return r.status_code, None


class PlayFabApi:
    """
    The gated call path: every outbound attempt is throttled first and
    recorded in the ledger afterwards, whatever its outcome.
    """

    def __init__(
        self,
        transport: PlayFabTransport,
        limiter: AdaptiveRateLimiter,
        ledger: CallLedger,
        token_provider: Optional[SessionTokenSource] = None,
    ):
        self.transport = transport
        self.limiter = limiter
        self.ledger = ledger
        self.token_provider = token_provider

    @property
    def title_id(self) -> str:
        return self.transport.title_id

    def call(
        self,
        endpoint: str,
        body: Optional[Dict[str, Any]] = None,
        *,
        authenticated: bool = True,
        qualifier: Optional[str] = None,
    ) -> Dict[str, Any]:
        ep = normalize_endpoint(endpoint)
        logical = normalize_endpoint(ep, qualifier)

        headers: Dict[str, str] = {}
        if authenticated:
            if self.token_provider is None:
                raise AuthError(f"{ep} needs a session but no login is configured")
            headers[AUTH_HEADER] = self.token_provider.current_session_token()

        self.limiter.throttle()
        http_start(endpoint=logical, qualifier=qualifier)
        t0 = time.monotonic()

        try:
            http_status, parsed = self.transport.fetch(ep, headers, body)
        except TransportError as e:
            elapsed = int((time.monotonic() - t0) * 1000)
            self.ledger.record(logical, 0)
            http_error(endpoint=logical, status=None, error=str(e), elapsed_ms=elapsed)
            raise

        elapsed = int((time.monotonic() - t0) * 1000)
        status = envelope_status(http_status, parsed)
        self.ledger.record(logical, status)

        if status != SUCCESS_STATUS:
            err = _remote_error(status, parsed, ep)
            http_error(endpoint=logical, status=status, error=str(err), elapsed_ms=elapsed)
            if err.unauthorized and self.token_provider is not None:
                self.token_provider.invalidate()
            raise err

        data = parsed.get("data") if isinstance(parsed, dict) else None
        if not isinstance(data, dict):
            data = {}
        http_ok(endpoint=logical, status=status, elapsed_ms=elapsed, keys_count=len(data))
        return data


def _remote_error(status: int, parsed: Any, endpoint: str) -> RemoteApiError:
    p = parsed if isinstance(parsed, dict) else {}
    code = p.get("errorCode")
    try:
        error_code = int(code) if code is not None else None
    except (TypeError, ValueError):
        error_code = None
    return RemoteApiError(
        status,
        error=str(p.get("error") or p.get("status") or ""),
        message=str(p.get("errorMessage") or ""),
        error_code=error_code,
        endpoint=endpoint,
    )
