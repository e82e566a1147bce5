"""
Daily Task Engine - owns the plan and same-day state, serializes operator actions.

Entry points:
- generate(): rebuild today's plan from the catalog (replaces any prior plan)
- complete(account_id, item_index, batch_index): record an operator completion
- evaluate(now): readiness for every planned task (pure over a snapshot)

Subscribers registered with subscribe() are called with every new
CompletedDailyTask ledger entry.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple

from dailytasks.config import ACCOUNTS_PER_GAME_PER_BATCH, PURCHASE_JITTER_SECONDS, STRICT_INVARIANTS
from dailytasks.services.account_gateway import AccountDataGateway
from dailytasks.services.batch_planner import PlanWarning, collect_game_tasks, jitter_rng, plan_batches
from dailytasks.services.completion_recorder import (
    STATUS_GROUP_COMPLETED,
    STATUS_ITEM_COMPLETED,
    CompletionOutcome,
    record_completion,
)
from dailytasks.services.daily_task_types import (
    AccountCompletionRecord,
    AccountStartState,
    AccountTaskAssignment,
    CompletedDailyTask,
    DailyTask,
    GameBatch,
    Readiness,
)
from dailytasks.services.errors import CacheWriteError, GatewayError
from dailytasks.services.operational_cache import OperationalCache
from dailytasks.services.readiness import evaluate_plan, unready_sort_key

logger = logging.getLogger(__name__)

CompletionListener = Callable[[CompletedDailyTask], None]


@dataclass
class TaskReadiness:
    batch_index: int
    task: DailyTask
    readiness: Readiness


@dataclass
class GenerateResult:
    target_date: date
    batches: List[GameBatch]
    warnings: List[PlanWarning] = field(default_factory=list)

    @property
    def task_count(self) -> int:
        return sum(len(b.tasks) for b in self.batches)

    def to_dict(self):
        return {
            "target_date": self.target_date.isoformat(),
            "batch_count": len(self.batches),
            "task_count": self.task_count,
            "warnings": [w.to_dict() for w in self.warnings],
        }


class DailyTaskEngine:
    def __init__(
        self,
        gateway: AccountDataGateway,
        cache: OperationalCache,
        clock: Callable[[], datetime] = datetime.now,
        accounts_per_game: Optional[int] = ACCOUNTS_PER_GAME_PER_BATCH,
        strict: bool = STRICT_INVARIANTS,
        rng_factory: Callable[[int, date], random.Random] = jitter_rng,
        jitter_seconds: int = PURCHASE_JITTER_SECONDS,
    ):
        self.gateway = gateway
        self.cache = cache
        self.clock = clock
        self.accounts_per_game = accounts_per_game
        self.strict = strict
        self.rng_factory = rng_factory
        self.jitter_seconds = jitter_seconds

        self._lock = threading.RLock()
        self._listeners: List[CompletionListener] = []
        self._game_names: Dict[int, str] = {}

        self._day: Optional[date] = None
        self._batches: List[GameBatch] = []
        self._completion_records: Dict[int, AccountCompletionRecord] = {}
        self._start_states: Dict[int, AccountStartState] = {}
        self._assignments: Dict[int, List[AccountTaskAssignment]] = {}
        self._ledger: List[CompletedDailyTask] = []

        self.restore()

    # -- state lifecycle ---------------------------------------------------

    def restore(self) -> None:
        """Reload all same-day state from the cache (startup / restart)."""
        with self._lock:
            now = self.clock()
            self._day = now.date()
            self._completion_records = self.cache.load_completion_records(now)
            self._start_states = self.cache.load_start_states()
            self._assignments = self.cache.load_assignments(now)
            self._ledger = self.cache.load_ledger(self._day)
            self._batches = self.cache.load_plan(self._day) or []
            logger.info(
                "Restored %d batches, %d completion records, %d ledger entries for %s",
                len(self._batches),
                len(self._completion_records),
                len(self._ledger),
                self._day,
            )

    def _roll_day(self, now: datetime) -> None:
        if now.date() == self._day:
            return
        logger.info("Day changed from %s to %s; discarding plan and ledger", self._day, now.date())
        self._day = now.date()
        self._ledger = self.cache.load_ledger(self._day)
        self._batches = self.cache.load_plan(self._day) or []

    def _persist(self, what: str, save: Callable[[], None]) -> None:
        try:
            save()
        except CacheWriteError:
            logger.exception("Failed to persist %s; keeping in-memory state", what)

    def _persist_plan(self) -> None:
        self._persist("plan", lambda: self.cache.save_plan(self._day, self._batches))

    # -- entry points ------------------------------------------------------

    def generate(self) -> GenerateResult:
        with self._lock:
            now = self.clock()
            self._roll_day(now)

            collected = collect_game_tasks(
                self.gateway,
                self._day,
                start_states=self._start_states,
                rng_factory=self.rng_factory,
                jitter_seconds=self.jitter_seconds,
            )
            plan = plan_batches(collected.game_tasks, now, accounts_per_game=self.accounts_per_game)

            self._game_names.update(collected.game_names)
            self._start_states.update(collected.start_states)
            for assignment in plan.assignments:
                self._assignments.setdefault(assignment.account_id, []).append(assignment)
            self._batches = plan.batches

            self._persist("start states", lambda: self.cache.save_start_states(self._start_states))
            self._persist("assignments", lambda: self.cache.save_assignments(self._assignments))
            self._persist_plan()

            logger.info(
                "Generated %d batches for %s (%d warnings)", len(plan.batches), self._day, len(collected.warnings)
            )
            return GenerateResult(
                target_date=self._day,
                batches=[b.model_copy(deep=True) for b in plan.batches],
                warnings=collected.warnings,
            )

    def complete(self, account_id: int, item_index: int, batch_index: int) -> CompletionOutcome:
        with self._lock:
            now = self.clock()
            self._roll_day(now)
            game_names = self._ensure_game_names()

            outcome = record_completion(
                self._batches,
                account_id,
                item_index,
                batch_index,
                self.gateway,
                now,
                self._completion_records,
                self._assignments,
                self._ledger,
                game_names,
                strict=self.strict,
            )

            if outcome.group_completed:
                self._persist("completion records", lambda: self.cache.save_completion_records(self._completion_records))
                self._persist("assignments", lambda: self.cache.save_assignments(self._assignments))
                self._persist("ledger", lambda: self.cache.save_ledger(self._day, self._ledger))
            if outcome.status in (STATUS_ITEM_COMPLETED, STATUS_GROUP_COMPLETED):
                self._persist_plan()

        if outcome.ledger_entry is not None:
            self._notify(outcome.ledger_entry)
        return outcome

    def _ensure_game_names(self) -> Dict[int, str]:
        if self._game_names:
            return self._game_names
        try:
            self._game_names = {g.id: g.name for g in self.gateway.list_games()}
        except GatewayError as e:
            logger.warning("Could not load game names: %s", e)
        return self._game_names

    # -- readiness ---------------------------------------------------------

    def _snapshot(self, now: Optional[datetime]):
        with self._lock:
            if now is None:
                now = self.clock()
                self._roll_day(now)
            return (
                now,
                [b.model_copy(deep=True) for b in self._batches],
                dict(self._completion_records),
                dict(self._start_states),
            )

    def evaluate_now(self) -> Tuple[datetime, List[TaskReadiness]]:
        """Readiness at the engine clock, after switching to a new day if needed."""
        now, batches, records, start_states = self._snapshot(None)
        return now, self._evaluate(now, batches, records, start_states)

    def evaluate(self, now: Optional[datetime] = None) -> List[TaskReadiness]:
        now, batches, records, start_states = self._snapshot(now)
        return self._evaluate(now, batches, records, start_states)

    @staticmethod
    def _evaluate(now, batches, records, start_states) -> List[TaskReadiness]:
        return [
            TaskReadiness(batch_index=batch.batch_index, task=task, readiness=readiness)
            for batch, task, readiness in evaluate_plan(batches, now, records, start_states)
        ]

    def unready(self, now: Optional[datetime] = None) -> List[TaskReadiness]:
        pending = [r for r in self.evaluate(now) if not r.readiness.ready]
        return sorted(pending, key=lambda r: unready_sort_key(r.readiness))

    # -- read snapshots ----------------------------------------------------

    @property
    def batches(self) -> List[GameBatch]:
        with self._lock:
            return [b.model_copy(deep=True) for b in self._batches]

    @property
    def completion_records(self) -> Dict[int, AccountCompletionRecord]:
        with self._lock:
            return dict(self._completion_records)

    @property
    def start_states(self) -> Dict[int, AccountStartState]:
        with self._lock:
            return dict(self._start_states)

    @property
    def assignments(self) -> Dict[int, List[AccountTaskAssignment]]:
        with self._lock:
            return {k: list(v) for k, v in self._assignments.items()}

    def completed_today(self) -> List[CompletedDailyTask]:
        with self._lock:
            self._roll_day(self.clock())
            return list(self._ledger)

    def clear_completed_today(self) -> None:
        with self._lock:
            self._roll_day(self.clock())
            self._ledger = []
            self._persist("ledger", lambda: self.cache.clear_ledger(self._day))

    # -- notifications -----------------------------------------------------

    def subscribe(self, listener: CompletionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, entry: CompletedDailyTask) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(entry)
            except Exception:
                logger.exception("Completion listener %r failed", listener)
