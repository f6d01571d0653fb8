from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

import tomlkit

from titlesync.playfab.errors import ConfigError

from .constants import SECRETS_FILE, SOURCE_KEY
from .locking import file_lock


def secure_secrets_file(path: str = SECRETS_FILE) -> None:
    if os.path.exists(path) and os.name != "nt":
        os.chmod(path, 0o600)


def _as_plain_dict(value: Any) -> Dict[str, Any]:
    """tomlkit tables act like dicts; normalize to a plain dict, shallowly."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def _read_doc(path: str) -> tomlkit.TOMLDocument:
    with open(path, "r", encoding="utf-8") as f:
        return tomlkit.parse(f.read())


def update_secret(source_name: str, secret_data: Dict[str, Any], *, merge: bool = True, path: str = SECRETS_FILE) -> None:
    """
    Write [sources.<source_name>]. By default the new keys are merged into
    what is already stored, so updating a password keeps the title id.
    """
    with file_lock(path) as f:
        content = f.read().strip()
        doc = tomlkit.parse(content) if content else tomlkit.document()

        if "sources" not in doc:
            doc["sources"] = tomlkit.table()

        incoming = {k: v for k, v in _as_plain_dict(secret_data).items() if v is not None}
        if merge:
            merged = _as_plain_dict(doc["sources"].get(source_name))
            merged.update(incoming)
            doc["sources"][source_name] = merged
        else:
            doc["sources"][source_name] = incoming

        f.seek(0)
        f.write(tomlkit.dumps(doc))
        f.truncate()

    secure_secrets_file(path)


def save_postgres_credentials(creds: Dict[str, Any], path: str = SECRETS_FILE) -> None:
    with file_lock(path) as f:
        content = f.read().strip()
        doc = tomlkit.parse(content) if content else tomlkit.document()

        if "destination" not in doc:
            doc["destination"] = tomlkit.table()
        if "postgres" not in doc["destination"]:
            doc["destination"]["postgres"] = tomlkit.table()
        doc["destination"]["postgres"]["credentials"] = dict(creds)

        f.seek(0)
        f.write(tomlkit.dumps(doc))
        f.truncate()

    secure_secrets_file(path)


def get_secret(source_name: str, path: str = SECRETS_FILE) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    doc = _read_doc(path)
    return _as_plain_dict(_as_plain_dict(doc.get("sources")).get(source_name))


def get_playfab_source(path: str = SECRETS_FILE) -> Dict[str, Any]:
    """[sources.playfab], with PLAYFAB_TITLE_ID taking precedence over the stored title id."""
    src = get_secret(SOURCE_KEY, path)
    if os.getenv("PLAYFAB_TITLE_ID"):
        src["title_id"] = os.getenv("PLAYFAB_TITLE_ID")
    if not src.get("title_id"):
        raise ConfigError(f"No PlayFab title_id configured (set [sources.{SOURCE_KEY}] in {path} or PLAYFAB_TITLE_ID)")
    return src


def get_postgres_credentials(path: str = SECRETS_FILE) -> Optional[Dict[str, Any]]:
    """
    [destination.postgres.credentials], with POSTGRES_HOST_OVERRIDE /
    POSTGRES_PORT_OVERRIDE applied for Docker setups. TITLESYNC_DSN replaces
    the whole block. None when nothing is configured.
    """
    if os.getenv("TITLESYNC_DSN"):
        return {"dsn": os.getenv("TITLESYNC_DSN")}
    if not os.path.exists(path):
        return None

    doc = _read_doc(path)
    dest = _as_plain_dict(_as_plain_dict(doc.get("destination")).get("postgres"))
    creds = _as_plain_dict(dest.get("credentials"))
    if not creds:
        return None

    if os.getenv("POSTGRES_HOST_OVERRIDE"):
        creds["host"] = os.getenv("POSTGRES_HOST_OVERRIDE")
    if os.getenv("POSTGRES_PORT_OVERRIDE"):
        try:
            creds["port"] = int(os.getenv("POSTGRES_PORT_OVERRIDE", ""))
        except ValueError as e:
            raise ConfigError(f"POSTGRES_PORT_OVERRIDE is not a port number: {e}") from e
    return creds
