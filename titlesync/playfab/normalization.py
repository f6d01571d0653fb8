# titlesync/playfab/normalization.py
from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from .constants import DEFAULT_TABLE_PREFIX
from .errors import MalformedDocumentError

# PostgreSQL silently truncates identifiers past NAMEDATALEN - 1 bytes.
MAX_IDENTIFIER_BYTES = 63
MAX_ENDPOINT_LENGTH = 255

_UPPER = re.compile(r"([A-Z])")
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_+")


def normalize_identifier(value: str) -> str:
    """
    PlayFab keys are PascalCase ("StarSystemData"); storage wants snake_case.

    Applying this to its own output is a no-op: the result is lowercase,
    has no whitespace, no repeated or edge underscores.
    """
    s = _UPPER.sub(r"_\1", value or "")
    s = _WHITESPACE.sub("_", s)
    s = _UNDERSCORES.sub("_", s)
    return s.strip("_").lower()


def table_name_for(category: str, prefix: str = DEFAULT_TABLE_PREFIX) -> str:
    name = normalize_identifier(category)
    if not name:
        raise MalformedDocumentError(f"category {category!r} has no usable table name")
    return check_identifier(f"{prefix}{name}")


def check_identifier(name: str) -> str:
    if not name:
        raise MalformedDocumentError("empty identifier")
    if len(name.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
        raise MalformedDocumentError(
            f"identifier {name[:40]!r}… exceeds {MAX_IDENTIFIER_BYTES} bytes"
        )
    return name


def normalize_endpoint(endpoint: str, qualifier: Optional[str] = None) -> str:
    """
    Ledger endpoints are stored without scheme/host:
      https://abc.playfabapi.com/Client/GetTitleData -> /Client/GetTitleData

    `qualifier` builds a logical endpoint key for caches that vary by argument:
      ("/Client/GetLeaderboard", "Kills:0") -> /Client/GetLeaderboard#Kills:0
    """
    raw = (endpoint or "").strip()
    parts = urlsplit(raw)
    if parts.netloc:
        raw = parts.path or "/"
        if parts.fragment:
            raw = f"{raw}#{parts.fragment}"
    if not raw.startswith("/"):
        raw = "/" + raw
    if qualifier:
        raw = f"{raw}#{qualifier}"
    return raw[:MAX_ENDPOINT_LENGTH]


def parse_category_content(content: Any) -> Dict[str, Any]:
    """
    GetTitleData returns each category either as a JSON-encoded string or an
    already-decoded object. Always hand back {record_id: fields}.
    """
    data = content
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8", errors="replace")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise MalformedDocumentError(f"content is not valid JSON: {e}") from e

    if isinstance(data, dict):
        return {str(k): v for k, v in data.items()}
    if isinstance(data, list):
        return {str(i): v for i, v in enumerate(data)}
    raise MalformedDocumentError(f"expected an object of records, got {type(data).__name__}")


def to_storable_text(value: Any) -> Optional[str]:
    """
    Every field is stored as text. The conversion is chosen by value kind:
      str -> as-is, bool -> "true"/"false", int/float -> str(), None -> NULL,
      dict/list -> compact JSON. Anything else is malformed.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list)):
        try:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise MalformedDocumentError(f"nested value is not JSON-serialisable: {e}") from e
    raise MalformedDocumentError(f"unsupported value type {type(value).__name__}")
