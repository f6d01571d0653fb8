"""
titlesync: caches PlayFab title data in PostgreSQL, growing the schema to fit
whatever the service returns and pacing calls against the API rate limit.

The engine lives in `titlesync/playfab/` and `titlesync/storage/`; the CLI in
`titlesync/orchestrator/`.
"""
from __future__ import annotations

__version__ = "0.3.0"
