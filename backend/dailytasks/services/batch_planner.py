"""
Batch Planner - interleaves every account's request groups into ordered batches.

Two phases:
1. Collection: per game, per account, fetch candidate requests through the
   gateway and group them. A gateway failure skips that account (or game) and
   is reported as a PlanWarning; it never aborts the pass.
2. Batching: per account cursor into its groups. Each sweep visits games in
   input order and, inside a game, accounts in input order; every account
   that still has groups contributes its next one (optionally capped per
   game). A sweep that adds nothing ends planning.

Guarantees:
- At most one task (one group) per account per batch
- An account's groups appear in increasing batch order, without gaps
- Identical inputs produce identical plans
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Mapping, Optional, Set

from dailytasks.config import ACCOUNTS_PER_GAME_PER_BATCH, PURCHASE_JITTER_SECONDS
from dailytasks.services.account_gateway import AccountDataGateway
from dailytasks.services.daily_requests import days_passed
from dailytasks.services.daily_task_types import (
    AccountStartState,
    AccountTaskAssignment,
    DailyTask,
    GameBatch,
)
from dailytasks.services.errors import GatewayError
from dailytasks.services.readiness import first_request_allowed_at, first_time_spent
from dailytasks.services.request_grouper import group_requests

logger = logging.getLogger(__name__)


@dataclass
class PlanWarning:
    code: str
    message: str
    game_id: Optional[int] = None
    account_id: Optional[int] = None

    def to_dict(self):
        return {
            "code": self.code,
            "message": self.message,
            "game_id": self.game_id,
            "account_id": self.account_id,
        }


@dataclass
class CollectionResult:
    # Insertion order = game order; list order = account order
    game_tasks: Dict[int, List[DailyTask]] = field(default_factory=dict)
    game_names: Dict[int, str] = field(default_factory=dict)
    start_states: Dict[int, AccountStartState] = field(default_factory=dict)
    warnings: List[PlanWarning] = field(default_factory=list)


@dataclass
class PlanResult:
    batches: List[GameBatch]
    assignments: List[AccountTaskAssignment]


def jitter_rng(account_id: int, target_date: date) -> random.Random:
    """Seeded per account and day so regenerating the same day is reproducible."""
    return random.Random(f"{account_id}:{target_date.isoformat()}")


def collect_game_tasks(
    gateway: AccountDataGateway,
    target_date: date,
    start_states: Optional[Mapping[int, AccountStartState]] = None,
    rng_factory: Callable[[int, date], random.Random] = jitter_rng,
    jitter_seconds: int = PURCHASE_JITTER_SECONDS,
) -> CollectionResult:
    """
    Fetch and group every account's requests for *target_date*.

    Start states are derived only for accounts that have none initialized yet;
    the returned mapping holds just the newly computed ones.
    """
    start_states = start_states or {}
    result = CollectionResult()

    try:
        games = gateway.list_games()
    except GatewayError as e:
        logger.warning("Could not list games: %s", e)
        result.warnings.append(PlanWarning(code="GAMES_UNAVAILABLE", message=str(e)))
        return result

    for game in games:
        result.game_names[game.id] = game.name
        try:
            accounts = gateway.list_accounts(game.id)
            levels = gateway.list_levels(game.id)
            purchase_events = gateway.list_purchase_events(game.id)
        except GatewayError as e:
            logger.warning("Skipping game %s (%s): %s", game.id, game.name, e)
            result.warnings.append(PlanWarning(code="GAME_SKIPPED", message=str(e), game_id=game.id))
            continue

        tasks: List[DailyTask] = []
        for account in accounts:
            try:
                items = gateway.list_candidate_requests(account.id, target_date)
            except GatewayError as e:
                logger.warning("Skipping account %s (%s): %s", account.id, account.name, e)
                result.warnings.append(
                    PlanWarning(code="ACCOUNT_SKIPPED", message=str(e), game_id=game.id, account_id=account.id)
                )
                continue

            groups = group_requests(
                items,
                levels,
                purchase_events,
                days_passed(account, target_date),
                rng=rng_factory(account.id, target_date),
                jitter_seconds=jitter_seconds,
            )
            if not groups:
                continue

            task = DailyTask(account=account, target_date=target_date, request_groups=groups)
            tasks.append(task)

            existing = start_states.get(account.id)
            if existing is None or not existing.is_initialized:
                first = first_time_spent(task)
                if first is not None:
                    result.start_states[account.id] = AccountStartState(
                        account_id=account.id,
                        start_time=account.start_instant,
                        first_request_allowed_at=first_request_allowed_at(account, first),
                        is_initialized=True,
                    )

        if tasks:
            result.game_tasks[game.id] = tasks

    return result


def plan_batches(
    game_tasks: Mapping[int, List[DailyTask]],
    now: datetime,
    accounts_per_game: Optional[int] = ACCOUNTS_PER_GAME_PER_BATCH,
) -> PlanResult:
    """
    Arrange request groups into batches.

    Args:
        game_tasks: game_id -> that game's accounts' full-day tasks (ordered)
        now: Assignment timestamp for the audit records
        accounts_per_game: Max accounts one game contributes to a batch
            (None = all accounts with remaining groups)

    Returns:
        PlanResult with batches numbered from 0 and one assignment per
        (account, group) pairing
    """
    cursors: Dict[int, int] = {}
    batches: List[GameBatch] = []
    assignments: List[AccountTaskAssignment] = []

    while True:
        batch_tasks: List[DailyTask] = []
        in_batch: Set[int] = set()

        for _game_id, tasks in game_tasks.items():
            taken = 0
            for task in tasks:
                if accounts_per_game is not None and taken >= accounts_per_game:
                    break
                account_id = task.account.id
                cursor = cursors.get(account_id, 0)
                if cursor >= len(task.request_groups) or account_id in in_batch:
                    continue

                group = task.request_groups[cursor]
                batch_tasks.append(
                    DailyTask(
                        account=task.account,
                        target_date=task.target_date,
                        request_groups=[group.model_copy(deep=True)],
                    )
                )
                assignments.append(
                    AccountTaskAssignment(
                        account_id=account_id,
                        assigned_time=now,
                        event_token=group.event_token,
                        time_spent=group.time_spent,
                    )
                )
                cursors[account_id] = cursor + 1
                in_batch.add(account_id)
                taken += 1

        if not batch_tasks:
            break
        batches.append(GameBatch(batch_index=len(batches), tasks=batch_tasks))

    return PlanResult(batches=batches, assignments=assignments)
