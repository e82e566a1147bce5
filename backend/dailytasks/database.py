"""
Catalog and cache database.

DATABASE_URL selects the backend (SQLite file by default). The engine is shared
by the account gateway and the SQL cache store; each opens short sessions.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dailytasks.db")

_is_sqlite = DATABASE_URL.startswith("sqlite")
_connect_args = {"check_same_thread": False} if _is_sqlite else {}
_echo = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")


def _ensure_sqlite_dir(url: str) -> None:
    if not url.startswith("sqlite:///") or ":memory:" in url:
        return
    Path(url[len("sqlite:///") :]).parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_dir(DATABASE_URL)

engine: Engine = create_engine(
    DATABASE_URL,
    echo=_echo,
    connect_args=_connect_args,
)


def init_db(bind: Engine = None) -> None:
    """Create every catalog, progress and cache table on *bind* (default: the app engine)."""
    # Model imports register the tables on SQLModel.metadata
    from dailytasks.models.account import Account  # noqa: F401
    from dailytasks.models.cache_entry import CacheEntry  # noqa: F401
    from dailytasks.models.game import Game  # noqa: F401
    from dailytasks.models.level import Level  # noqa: F401
    from dailytasks.models.progress import AccountLevelProgress, AccountPurchaseEventProgress  # noqa: F401
    from dailytasks.models.purchase_event import PurchaseEvent  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
