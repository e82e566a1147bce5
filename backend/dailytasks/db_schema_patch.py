from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

# Columns added after the first release; older databases lack them.
# (name, sqlite_type, postgres_type, default)
REQUIRED_ACCOUNT_COLUMNS: List[Tuple[str, str, str, str]] = [
    ("request_template", "TEXT", "TEXT", "DEFAULT ''"),
]

REQUIRED_LEVEL_COLUMNS: List[Tuple[str, str, str, str]] = [
    ("is_bonus", "INTEGER", "BOOLEAN", "DEFAULT 0"),
]

REQUIRED_PURCHASE_EVENT_COLUMNS: List[Tuple[str, str, str, str]] = [
    ("days_offset", "INTEGER", "INTEGER", "DEFAULT NULL"),
    ("max_days_offset", "INTEGER", "INTEGER", "DEFAULT NULL"),
]


def _is_sqlite(engine: Engine) -> bool:
    return engine.dialect.name.lower() == "sqlite"


def _table_exists(engine: Engine, table_name: str) -> bool:
    if _is_sqlite(engine):
        sql = "SELECT name FROM sqlite_master WHERE type='table' AND name=:table_name"
    else:
        sql = """
        SELECT table_name FROM information_schema.tables
        WHERE table_schema = 'public' AND table_name = :table_name
        """
    with engine.connect() as conn:
        return conn.execute(text(sql), {"table_name": table_name}).fetchone() is not None


def _get_existing_columns(engine: Engine, table_name: str) -> Dict[str, str]:
    cols: Dict[str, str] = {}
    with engine.connect() as conn:
        if _is_sqlite(engine):
            # PRAGMA table_info returns rows: (cid, name, type, notnull, dflt_value, pk)
            for row in conn.execute(text(f"PRAGMA table_info({table_name});")).fetchall():
                cols[str(row[1])] = str(row[2])
        else:
            sql = """
            SELECT column_name, data_type
            FROM information_schema.columns
            WHERE table_schema = 'public' AND table_name = :table_name;
            """
            for row in conn.execute(text(sql), {"table_name": table_name}).fetchall():
                cols[str(row[0])] = str(row[1])
    return cols


def _ensure_columns(engine: Engine, table_name: str, required: List[Tuple[str, str, str, str]]) -> List[str]:
    """Add any missing columns to *table_name*. Returns the names added."""
    if not _table_exists(engine, table_name):
        # create_all will create it with every column
        return []

    existing = _get_existing_columns(engine, table_name)
    added: List[str] = []
    with engine.begin() as conn:
        for name, sqlite_type, pg_type, default in required:
            if name in existing:
                continue
            if _is_sqlite(engine):
                conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {name} {sqlite_type} {default};"))
            else:
                conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN IF NOT EXISTS {name} {pg_type} {default};"))
            added.append(name)
    return added


def ensure_account_columns(engine: Engine) -> List[str]:
    """Adds account.request_template to databases created before it existed."""
    from dailytasks.models.account import Account

    try:
        return _ensure_columns(engine, Account.__table__.name, REQUIRED_ACCOUNT_COLUMNS)
    except SQLAlchemyError as e:
        logger.warning(f"Failed to ensure account columns: {e}")
        return []


def ensure_level_columns(engine: Engine) -> List[str]:
    """
    Idempotently adds required columns to the 'level' table if missing.
    Safe to run at every startup.
    """
    from dailytasks.models.level import Level

    try:
        return _ensure_columns(engine, Level.__table__.name, REQUIRED_LEVEL_COLUMNS)
    except SQLAlchemyError as e:
        logger.warning(f"Failed to ensure level columns: {e}")
        return []


def ensure_purchase_event_columns(engine: Engine) -> List[str]:
    """
    Idempotently adds required columns to the 'purchaseevent' table if missing.
    Safe to run at every startup.
    """
    from dailytasks.models.purchase_event import PurchaseEvent

    try:
        return _ensure_columns(engine, PurchaseEvent.__table__.name, REQUIRED_PURCHASE_EVENT_COLUMNS)
    except SQLAlchemyError as e:
        logger.warning(f"Failed to ensure purchase event columns: {e}")
        return []
