"""
Engine tunables, read once from the environment (.env supported).

Retention windows:
- Task assignments: pruned once older than ASSIGNMENT_RETENTION_HOURS
- Completion records: pruned once older than COMPLETION_RETENTION_DAYS
"""

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).lower() in ("true", "1", "yes")


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return int(raw)


ASSIGNMENT_RETENTION_HOURS = int(os.getenv("ASSIGNMENT_RETENTION_HOURS", "24"))
COMPLETION_RETENTION_DAYS = int(os.getenv("COMPLETION_RETENTION_DAYS", "7"))

# Upper bound (seconds, either direction) on the jitter added to synthesized purchase timings
PURCHASE_JITTER_SECONDS = int(os.getenv("PURCHASE_JITTER_SECONDS", "30"))

# None = every account of a game contributes one group per batch
ACCOUNTS_PER_GAME_PER_BATCH: Optional[int] = _env_optional_int("ACCOUNTS_PER_GAME_PER_BATCH")

# Raise on plan invariant violations instead of logging and ignoring them
STRICT_INVARIANTS = _env_bool("STRICT_INVARIANTS", False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS: List[str] = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    CORS_ORIGINS.extend(o.strip() for o in _extra.split(",") if o.strip())
