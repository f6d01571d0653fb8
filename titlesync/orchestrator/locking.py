from __future__ import annotations

import os
from contextlib import contextmanager
from typing import IO, Iterator

import portalocker

from .constants import LOCK_TIMEOUT_SECONDS


@contextmanager
def file_lock(file_path: str, *, timeout: float = LOCK_TIMEOUT_SECONDS) -> Iterator[IO[str]]:
    """
    Exclusive lock around config/secrets rewrites. Yields the file opened r+
    (created empty if missing) so the caller can read, rewind and rewrite it.
    """
    abs_path = os.path.abspath(file_path)
    parent = os.path.dirname(abs_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    if not os.path.exists(abs_path):
        open(abs_path, "w", encoding="utf-8").close()

    with portalocker.Lock(abs_path, mode="r+", timeout=timeout, flags=portalocker.LOCK_EX | portalocker.LOCK_NB) as f:
        yield f
