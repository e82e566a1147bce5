"""
Daily Request Generation - derives an account's candidate requests for a date.

Rules:
- days_passed = target_date - account.start_date (whole days)
- Each uncompleted level due that day yields a Level Session + Level Event pair
- Each uncompleted purchase event due that day yields one Purchase Event item
  with no timing (time_spent=0); the grouper synthesizes its session half
- An account that has not started yet (days_passed < 0) has no requests
- Every item carries the account's request template as raw content; the
  grouper renders it once the item's timing is final
"""

from datetime import date
from typing import Dict, List, Sequence, Set

from dailytasks.models.level import Level
from dailytasks.models.progress import AccountPurchaseEventProgress
from dailytasks.models.purchase_event import PurchaseEvent
from dailytasks.services.daily_task_types import (
    REQUEST_TYPE_LEVEL_EVENT,
    REQUEST_TYPE_LEVEL_SESSION,
    REQUEST_TYPE_PURCHASE_EVENT,
    AccountInfo,
    RequestItem,
)


def days_passed(account: AccountInfo, target_date: date) -> int:
    return (target_date - account.start_date).days


def purchase_event_due(
    purchase_event: PurchaseEvent,
    day: int,
    progress: AccountPurchaseEventProgress = None,
) -> bool:
    """Check whether a purchase event falls on *day* for one account."""
    offset = purchase_event.days_offset
    if progress is not None and progress.days_offset is not None:
        offset = progress.days_offset
    if offset is None or offset != day:
        return False
    if purchase_event.is_restricted and purchase_event.max_days_offset is not None:
        return day <= purchase_event.max_days_offset
    return True


def build_daily_requests(
    account: AccountInfo,
    target_date: date,
    levels: Sequence[Level],
    purchase_events: Sequence[PurchaseEvent],
    completed_level_ids: Set[int],
    purchase_progress: Dict[int, AccountPurchaseEventProgress],
) -> List[RequestItem]:
    day = days_passed(account, target_date)
    if day < 0:
        return []

    items: List[RequestItem] = []
    for level in sorted(levels, key=lambda lv: (lv.time_spent, lv.id or 0)):
        if level.days_offset != day or level.id in completed_level_ids:
            continue
        for kind, request_type in (("session", REQUEST_TYPE_LEVEL_SESSION), ("event", REQUEST_TYPE_LEVEL_EVENT)):
            items.append(
                RequestItem(
                    kind=kind,
                    event_token=level.event_token,
                    time_spent=level.time_spent,
                    level_id=level.id,
                    level_name=level.level_name,
                    request_type=request_type,
                    content=account.request_template,
                )
            )

    for purchase_event in purchase_events:
        progress = purchase_progress.get(purchase_event.id)
        if progress is not None and progress.is_completed:
            continue
        if not purchase_event_due(purchase_event, day, progress):
            continue
        items.append(
            RequestItem(
                kind="event",
                event_token=purchase_event.event_token,
                time_spent=progress.time_spent if progress is not None else 0,
                level_id=None,
                purchase_event_id=purchase_event.id,
                level_name="$$$",
                request_type=REQUEST_TYPE_PURCHASE_EVENT,
                content=account.request_template,
            )
        )

    return items
