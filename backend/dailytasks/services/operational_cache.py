"""
Operational Cache - same-day engine state behind a load/save-by-key port.

Keys:
- accountTaskAssignments           account -> assignment history (24h retention)
- accountCompletionRecords         account -> latest completion (7 day retention)
- accountStartStates               account -> first-request eligibility (kept)
- dailyTasks_completed_<date>      that day's completion ledger
- dailyTasks_batches_<date>        that day's generated plan

Reads are best-effort: a missing or unparseable entry reads as absent and is
logged, never raised. The planner can always rebuild from the catalog.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Protocol

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from dailytasks.config import ASSIGNMENT_RETENTION_HOURS, COMPLETION_RETENTION_DAYS
from dailytasks.models.cache_entry import CacheEntry
from dailytasks.services.daily_task_types import (
    AccountCompletionRecord,
    AccountStartState,
    AccountTaskAssignment,
    CompletedDailyTask,
    GameBatch,
)
from dailytasks.services.errors import CacheWriteError

logger = logging.getLogger(__name__)

ASSIGNMENTS_KEY = "accountTaskAssignments"
COMPLETION_RECORDS_KEY = "accountCompletionRecords"
START_STATES_KEY = "accountStartStates"

_assignments_adapter = TypeAdapter(Dict[int, List[AccountTaskAssignment]])
_records_adapter = TypeAdapter(Dict[int, AccountCompletionRecord])
_start_states_adapter = TypeAdapter(Dict[int, AccountStartState])
_ledger_adapter = TypeAdapter(List[CompletedDailyTask])
_plan_adapter = TypeAdapter(List[GameBatch])


def ledger_key(day: date) -> str:
    return f"dailyTasks_completed_{day.isoformat()}"


def plan_key(day: date) -> str:
    return f"dailyTasks_batches_{day.isoformat()}"


class CacheStore(Protocol):
    def load(self, key: str) -> Optional[str]: ...

    def save(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCacheStore:
    """Process-memory store (tests, ephemeral runs)."""

    def __init__(self):
        self.data: Dict[str, str] = {}

    def load(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def save(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class SqlCacheStore:
    """Store backed by the cacheentry table; survives restarts."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def load(self, key: str) -> Optional[str]:
        try:
            with Session(self.engine) as session:
                entry = session.get(CacheEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None

    def save(self, key: str, value: str) -> None:
        try:
            with Session(self.engine) as session:
                entry = session.get(CacheEntry, key)
                if entry is None:
                    entry = CacheEntry(key=key, value=value)
                else:
                    entry.value = value
                    entry.updated_at = datetime.utcnow()
                session.add(entry)
                session.commit()
        except SQLAlchemyError as e:
            raise CacheWriteError(f"Cache write failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with Session(self.engine) as session:
                entry = session.get(CacheEntry, key)
                if entry is not None:
                    session.delete(entry)
                    session.commit()
        except SQLAlchemyError as e:
            raise CacheWriteError(f"Cache delete failed for {key}: {e}") from e


class OperationalCache:
    def __init__(
        self,
        store: CacheStore,
        assignment_retention: timedelta = timedelta(hours=ASSIGNMENT_RETENTION_HOURS),
        completion_retention: timedelta = timedelta(days=COMPLETION_RETENTION_DAYS),
    ):
        self.store = store
        self.assignment_retention = assignment_retention
        self.completion_retention = completion_retention

    def _load(self, key: str, adapter: TypeAdapter):
        raw = self.store.load(key)
        if raw is None:
            return None
        try:
            return adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning("Ignoring corrupt cache entry %s (%d errors)", key, e.error_count())
            return None

    def _save(self, key: str, adapter: TypeAdapter, value) -> None:
        self.store.save(key, adapter.dump_json(value).decode("utf-8"))

    # -- assignments -------------------------------------------------------

    def load_assignments(self, now: datetime) -> Dict[int, List[AccountTaskAssignment]]:
        loaded = self._load(ASSIGNMENTS_KEY, _assignments_adapter) or {}
        pruned: Dict[int, List[AccountTaskAssignment]] = {}
        for account_id, assignments in loaded.items():
            fresh = [a for a in assignments if now - a.assigned_time < self.assignment_retention]
            if fresh:
                pruned[account_id] = fresh
        return pruned

    def save_assignments(self, assignments: Dict[int, List[AccountTaskAssignment]]) -> None:
        self._save(ASSIGNMENTS_KEY, _assignments_adapter, assignments)

    # -- completion records ------------------------------------------------

    def load_completion_records(self, now: datetime) -> Dict[int, AccountCompletionRecord]:
        loaded = self._load(COMPLETION_RECORDS_KEY, _records_adapter) or {}
        return {
            account_id: record
            for account_id, record in loaded.items()
            if now - record.completion_time < self.completion_retention
        }

    def save_completion_records(self, records: Dict[int, AccountCompletionRecord]) -> None:
        self._save(COMPLETION_RECORDS_KEY, _records_adapter, records)

    # -- start states ------------------------------------------------------

    def load_start_states(self) -> Dict[int, AccountStartState]:
        return self._load(START_STATES_KEY, _start_states_adapter) or {}

    def save_start_states(self, start_states: Dict[int, AccountStartState]) -> None:
        self._save(START_STATES_KEY, _start_states_adapter, start_states)

    # -- ledger ------------------------------------------------------------

    def load_ledger(self, day: date) -> List[CompletedDailyTask]:
        entries = self._load(ledger_key(day), _ledger_adapter) or []
        return [e for e in entries if e.completion_date == day]

    def save_ledger(self, day: date, entries: List[CompletedDailyTask]) -> None:
        self._save(ledger_key(day), _ledger_adapter, entries)

    def clear_ledger(self, day: date) -> None:
        self.store.delete(ledger_key(day))

    # -- plan --------------------------------------------------------------

    def load_plan(self, day: date) -> Optional[List[GameBatch]]:
        return self._load(plan_key(day), _plan_adapter)

    def save_plan(self, day: date, batches: List[GameBatch]) -> None:
        self._save(plan_key(day), _plan_adapter, batches)
