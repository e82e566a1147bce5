"""
Completion Recorder - marks one request item done and advances the account.

A completion against a batch while the account still has a task in an
earlier batch is rejected the same way as an unknown reference.

Steps (only after the catalog write succeeds):
1. Mark the item index in the task's completion set
2. If that finishes the item's request group:
   a. overwrite the account's completion record (cooldown anchor)
   b. clear the account's assignment history
   c. append a ledger entry for today
   d. remove the account's task from its batch, dropping the batch if empty

All-or-nothing: a GatewayError propagates before anything is mutated, so
the caller can retry with the same arguments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from dailytasks.config import STRICT_INVARIANTS
from dailytasks.services.account_gateway import AccountDataGateway
from dailytasks.services.daily_task_types import (
    REQUEST_TYPE_LEVEL_EVENT,
    REQUEST_TYPE_PURCHASE_EVENT,
    REQUEST_TYPE_SESSION_ONLY,
    AccountCompletionRecord,
    AccountTaskAssignment,
    CompletedDailyTask,
    DailyTask,
    GameBatch,
    RequestGroup,
)
from dailytasks.services.errors import PlanInvariantError
from dailytasks.services.readiness import is_blocked

logger = logging.getLogger(__name__)

STATUS_ITEM_COMPLETED = "item_completed"
STATUS_GROUP_COMPLETED = "group_completed"
STATUS_ALREADY_COMPLETED = "already_completed"
STATUS_IGNORED = "ignored"


@dataclass
class CompletionOutcome:
    status: str
    account_id: int
    batch_index: int
    record: Optional[AccountCompletionRecord] = None
    ledger_entry: Optional[CompletedDailyTask] = None
    batch_removed: bool = False

    @property
    def group_completed(self) -> bool:
        return self.status == STATUS_GROUP_COMPLETED

    def to_dict(self):
        return {
            "status": self.status,
            "account_id": self.account_id,
            "batch_index": self.batch_index,
            "group_completed": self.group_completed,
            "batch_removed": self.batch_removed,
            "ledger_entry": self.ledger_entry.model_dump(mode="json") if self.ledger_entry else None,
        }


def classify_group(group: RequestGroup) -> str:
    if group.is_purchase:
        return REQUEST_TYPE_PURCHASE_EVENT
    kinds = {r.kind for r in group.requests}
    if kinds == {"session"}:
        return REQUEST_TYPE_SESSION_ONLY
    return REQUEST_TYPE_LEVEL_EVENT


def build_ledger_entry(task: DailyTask, group: RequestGroup, now: datetime, game_name: str) -> CompletedDailyTask:
    is_purchase = group.is_purchase
    level_id = next((r.level_id for r in group.requests if r.level_id is not None), None)
    level_name = next((r.level_name.strip() for r in group.requests if r.level_name and r.level_name.strip()), None)
    return CompletedDailyTask(
        id=f"{task.account.id}_{group.event_token}_{int(now.timestamp() * 1000)}",
        account_id=task.account.id,
        account_name=task.account.name,
        game_id=task.account.game_id,
        game_name=game_name,
        event_token=group.event_token,
        time_spent=group.time_spent,
        completion_time=now,
        completion_date=now.date(),
        level_id=level_id,
        level_name=level_name or ("$$$" if is_purchase else "-"),
        request_type=classify_group(group),
        is_purchase=is_purchase,
    )


def _find_batch(batches: List[GameBatch], batch_index: int) -> Optional[GameBatch]:
    for batch in batches:
        if batch.batch_index == batch_index:
            return batch
    return None


def record_completion(
    batches: List[GameBatch],
    account_id: int,
    item_index: int,
    batch_index: int,
    gateway: AccountDataGateway,
    now: datetime,
    completion_records: Dict[int, AccountCompletionRecord],
    assignments: Dict[int, List[AccountTaskAssignment]],
    ledger: List[CompletedDailyTask],
    game_names: Mapping[int, str],
    strict: bool = STRICT_INVARIANTS,
) -> CompletionOutcome:
    """
    Complete one request item of an account's task in the given batch.

    Mutates batches, completion_records, assignments and ledger in place.

    Raises:
        GatewayError: persisting the completion flag failed (nothing mutated)
        PlanInvariantError: unknown batch/account/index, or the account still
            has a group in an earlier batch, and strict is on
    """
    batch = _find_batch(batches, batch_index)
    task = batch.task_for(account_id) if batch is not None else None
    requests = task.requests if task is not None else []

    if task is None or not 0 <= item_index < len(requests):
        message = (
            f"No request {item_index} for account {account_id} in batch {batch_index}"
            if task is not None
            else f"Account {account_id} has no task in batch {batch_index}"
        )
        if strict:
            raise PlanInvariantError(message)
        logger.error("Ignoring completion: %s", message)
        return CompletionOutcome(status=STATUS_IGNORED, account_id=account_id, batch_index=batch_index)

    if is_blocked(account_id, batch_index, batches):
        message = f"Account {account_id} still has work in a batch before {batch_index}"
        if strict:
            raise PlanInvariantError(message)
        logger.error("Ignoring completion: %s", message)
        return CompletionOutcome(status=STATUS_IGNORED, account_id=account_id, batch_index=batch_index)

    if item_index in task.completed:
        return CompletionOutcome(status=STATUS_ALREADY_COMPLETED, account_id=account_id, batch_index=batch_index)

    item = requests[item_index]
    gateway.mark_completed(account_id, item)

    task.completed.add(item_index)

    group_pos = next(pos for pos, indices in enumerate(task.group_indices()) if item_index in indices)
    group_indices = task.group_indices()[group_pos]
    if not all(idx in task.completed for idx in group_indices):
        logger.info("Account %s completed request %d of batch %d", account_id, item_index, batch_index)
        return CompletionOutcome(status=STATUS_ITEM_COMPLETED, account_id=account_id, batch_index=batch_index)

    group = task.request_groups[group_pos]
    record = AccountCompletionRecord(
        account_id=account_id,
        time_spent=group.time_spent,
        completion_time=now,
        event_token=group.event_token,
        level_id=item.level_id,
    )
    completion_records[account_id] = record
    assignments[account_id] = []

    entry = build_ledger_entry(task, group, now, game_names.get(task.account.game_id, "Unknown"))
    ledger.append(entry)

    batch.tasks = [t for t in batch.tasks if t.account.id != account_id]
    batch_removed = not batch.tasks
    if batch_removed:
        batches.remove(batch)

    logger.info(
        "Account %s completed group %r (time_spent=%d) in batch %d",
        account_id,
        group.event_token,
        group.time_spent,
        batch_index,
    )
    return CompletionOutcome(
        status=STATUS_GROUP_COMPLETED,
        account_id=account_id,
        batch_index=batch_index,
        record=record,
        ledger_entry=entry,
        batch_removed=batch_removed,
    )
