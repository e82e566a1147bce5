"""
Readiness Evaluator - classifies a planned task at a given instant.

Evaluation order (first match wins):
1. BLOCKED: an earlier batch still holds a task for the same account
2. COOLDOWN: account has a completion record and the time_spent delta
   since that completion has not elapsed yet
3. INITIAL_DELAY: no completion record yet and the account's first
   request is not allowed yet (start instant + first time_spent)
4. READY

Pure: no state, no clock. Comparisons are exact on timedelta; only the
displayed remaining_seconds is rounded (ceiling) to whole seconds.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dailytasks.services.daily_task_types import (
    AccountCompletionRecord,
    AccountInfo,
    AccountStartState,
    DailyTask,
    GameBatch,
    Readiness,
    ReadinessState,
)

_ONE_SECOND_US = 1_000_000


def first_request_allowed_at(account: AccountInfo, first_time_spent: int) -> datetime:
    """Instant at which an account's first request becomes eligible."""
    return account.start_instant + timedelta(seconds=first_time_spent)


def first_time_spent(task: DailyTask) -> Optional[int]:
    """Smallest time_spent among the task's session/event items."""
    timings = [r.time_spent for r in task.requests if r.kind in ("session", "event")]
    return min(timings) if timings else None


def ceil_seconds(delta: timedelta) -> int:
    """Whole seconds, rounded up, for a positive shortfall."""
    micros = delta // timedelta(microseconds=1)
    return max(0, -(-micros // _ONE_SECOND_US))


def is_blocked(account_id: int, batch_index: int, all_batches: Sequence[GameBatch]) -> bool:
    return any(
        b.batch_index < batch_index and b.task_for(account_id) is not None for b in all_batches
    )


def _current_time_spent(task: DailyTask) -> int:
    if task.request_groups:
        return task.request_groups[0].time_spent
    requests = task.requests
    return requests[0].time_spent if requests else 0


def evaluate(
    task: DailyTask,
    batch_index: int,
    all_batches: Sequence[GameBatch],
    now: datetime,
    completion_records: Mapping[int, AccountCompletionRecord],
    start_states: Mapping[int, AccountStartState],
) -> Readiness:
    account_id = task.account.id

    if is_blocked(account_id, batch_index, all_batches):
        return Readiness(state=ReadinessState.blocked)

    record = completion_records.get(account_id)
    if record is not None:
        required_wait = timedelta(seconds=max(0, _current_time_spent(task) - record.time_spent))
        eta = record.completion_time + required_wait
        if now - record.completion_time >= required_wait:
            return Readiness(state=ReadinessState.ready)
        return Readiness(state=ReadinessState.cooldown, remaining_seconds=ceil_seconds(eta - now), eta=eta)

    allowed_at: Optional[datetime] = None
    start_state = start_states.get(account_id)
    if start_state is not None and start_state.is_initialized:
        allowed_at = start_state.first_request_allowed_at
    else:
        first = first_time_spent(task)
        if first is not None:
            allowed_at = first_request_allowed_at(task.account, first)

    if allowed_at is not None and now < allowed_at:
        return Readiness(
            state=ReadinessState.initial_delay,
            remaining_seconds=ceil_seconds(allowed_at - now),
            eta=allowed_at,
        )

    return Readiness(state=ReadinessState.ready)


def evaluate_plan(
    batches: Sequence[GameBatch],
    now: datetime,
    completion_records: Mapping[int, AccountCompletionRecord],
    start_states: Mapping[int, AccountStartState],
) -> List[Tuple[GameBatch, DailyTask, Readiness]]:
    """Evaluate every task of the plan, in batch then task order."""
    results: List[Tuple[GameBatch, DailyTask, Readiness]] = []
    for batch in batches:
        for task in batch.tasks:
            results.append(
                (batch, task, evaluate(task, batch.batch_index, batches, now, completion_records, start_states))
            )
    return results


def unready_sort_key(readiness: Readiness) -> Tuple[int, datetime]:
    """Soonest ETA first; blocked tasks (no ETA) last."""
    if readiness.eta is None:
        return (1, datetime.max)
    return (0, readiness.eta)


def readiness_counts(readinesses: Iterable[Readiness]) -> Dict[str, int]:
    counts = {state.value: 0 for state in ReadinessState}
    for readiness in readinesses:
        counts[readiness.state.value] += 1
    return counts
