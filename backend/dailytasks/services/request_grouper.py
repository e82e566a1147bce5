"""
Request Grouper - partitions one account's candidate requests into request groups.

A request group is the set of items sharing (event_token, time_spent); it is
completed as one unit. Purchase milestones (items without a level_id) always
become a Purchase Session + Purchase Event pair sharing one synthesized timing.

Each item's content (the account's request template) is rendered with its
final event_token and time_spent, so synthesized purchase timings show up in
the text the operator sends.

Pure transform: no I/O. Malformed items are logged and skipped, stale items
(token unknown to the game's catalog) are dropped silently.
"""

from __future__ import annotations

import logging
import math
import random
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from pydantic import ValidationError

from dailytasks.config import PURCHASE_JITTER_SECONDS
from dailytasks.models.level import Level
from dailytasks.models.purchase_event import PurchaseEvent
from dailytasks.services.daily_task_types import (
    REQUEST_TYPE_PURCHASE_EVENT,
    REQUEST_TYPE_PURCHASE_SESSION,
    RequestGroup,
    RequestItem,
)

logger = logging.getLogger(__name__)

RawItem = Union[RequestItem, Dict[str, Any]]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def render_request_content(template: str, event_token: str, time_spent: int) -> str:
    """Fill {event_token} and {time_spent}; other braces (e.g. JSON bodies) are left alone."""
    return template.replace("{event_token}", event_token).replace("{time_spent}", str(time_spent))


def interpolate_time_spent(day: int, levels: Sequence[Level]) -> int:
    """Level timing for *day*, interpolated between the nearest defined levels.

    - exact days_offset match: that level's time_spent
    - before the first level: linear ramp from zero up to the first level
    - between two levels: linear interpolation
    - after the last level: the last level's time_spent
    """
    numeric = sorted(
        (lv for lv in levels if isinstance(lv.days_offset, int)),
        key=lambda lv: lv.days_offset,
    )
    if not numeric:
        return 0

    for lv in numeric:
        if lv.days_offset == day:
            return lv.time_spent

    prev_level = None
    next_level = None
    for lv in numeric:
        if lv.days_offset < day:
            prev_level = lv
        elif lv.days_offset > day and next_level is None:
            next_level = lv

    if next_level is not None and prev_level is None:
        increment = next_level.time_spent / (next_level.days_offset + 1)
        return round_half_up((day + 1) * increment)

    if prev_level is not None and next_level is not None:
        ratio = (day - prev_level.days_offset) / (next_level.days_offset - prev_level.days_offset)
        return round_half_up(prev_level.time_spent + ratio * (next_level.time_spent - prev_level.time_spent))

    return prev_level.time_spent


def purchase_time_spent(
    day: int,
    levels: Sequence[Level],
    rng: random.Random,
    jitter_seconds: int = PURCHASE_JITTER_SECONDS,
) -> int:
    """Midpoint between today's and tomorrow's interpolated level timing, plus bounded jitter."""
    midpoint = round_half_up((interpolate_time_spent(day, levels) + interpolate_time_spent(day + 1, levels)) / 2)
    jitter = rng.randint(-jitter_seconds, jitter_seconds) if jitter_seconds > 0 else 0
    return max(0, midpoint + jitter)


def _validate_items(items: Iterable[RawItem]) -> List[RequestItem]:
    valid: List[RequestItem] = []
    for raw in items:
        if isinstance(raw, RequestItem):
            valid.append(raw)
            continue
        try:
            valid.append(RequestItem.model_validate(raw))
        except ValidationError as exc:
            logger.warning("Skipping malformed request item %r: %s", raw, exc.errors())
    return valid


def _synthesize_purchase_pair(
    token: str,
    items: List[RequestItem],
    purchase_ids: Dict[str, int],
    day: int,
    levels: Sequence[Level],
    rng: random.Random,
    jitter_seconds: int,
) -> List[RequestItem]:
    existing = [r.time_spent for r in items if r.time_spent > 0]
    if existing:
        time_spent = existing[0]
    else:
        time_spent = purchase_time_spent(day, levels, rng, jitter_seconds)

    purchase_event_id = next((r.purchase_event_id for r in items if r.purchase_event_id is not None), None)
    if purchase_event_id is None:
        purchase_event_id = purchase_ids.get(token)
    level_name = next((r.level_name for r in items if r.level_name), None)
    content = next((r.content for r in items if r.content), "")

    return [
        RequestItem(
            kind=kind,
            event_token=token,
            time_spent=time_spent,
            level_id=None,
            purchase_event_id=purchase_event_id,
            level_name=level_name,
            request_type=request_type,
            content=content,
        )
        for kind, request_type in (
            ("session", REQUEST_TYPE_PURCHASE_SESSION),
            ("event", REQUEST_TYPE_PURCHASE_EVENT),
        )
    ]


def group_requests(
    items: Iterable[RawItem],
    levels: Sequence[Level],
    purchase_events: Sequence[PurchaseEvent],
    days_passed: int,
    rng: Optional[random.Random] = None,
    jitter_seconds: int = PURCHASE_JITTER_SECONDS,
) -> List[RequestGroup]:
    """
    Build the ordered request groups for one account's day.

    Args:
        items: Candidate requests (models or raw mappings from the gateway)
        levels: The game's levels (staleness filter + interpolation source)
        purchase_events: The game's purchase events (staleness filter)
        days_passed: Days since the account started, used for interpolation
        rng: Jitter source; pass a seeded Random for reproducible plans

    Returns:
        Groups sorted ascending by time_spent (stable), deduplicated by
        (kind, event_token, time_spent)
    """
    rng = rng or random.Random()
    level_tokens: Set[str] = {lv.event_token for lv in levels}
    purchase_ids: Dict[str, int] = {pe.event_token: pe.id for pe in purchase_events}

    known: List[RequestItem] = []
    for item in _validate_items(items):
        if item.event_token in level_tokens or item.event_token in purchase_ids:
            known.append(item)
        else:
            logger.debug("Dropping stale request for unknown token %r", item.event_token)

    # Collapse every purchase token into one synthesized pair at its first position
    purchase_items: "OrderedDict[str, List[RequestItem]]" = OrderedDict()
    for item in known:
        if item.is_purchase:
            purchase_items.setdefault(item.event_token, []).append(item)

    expanded: List[RequestItem] = []
    emitted_purchase: Set[str] = set()
    for item in known:
        if not item.is_purchase:
            expanded.append(item)
            continue
        if item.event_token in emitted_purchase:
            continue
        emitted_purchase.add(item.event_token)
        expanded.extend(
            _synthesize_purchase_pair(
                item.event_token,
                purchase_items[item.event_token],
                purchase_ids,
                days_passed,
                levels,
                rng,
                jitter_seconds,
            )
        )

    seen: Set[Tuple[str, str, int]] = set()
    groups: "OrderedDict[Tuple[str, int], RequestGroup]" = OrderedDict()
    for item in expanded:
        dedup_key = (item.kind, item.event_token, item.time_spent)
        if dedup_key in seen:
            continue
        seen.add(dedup_key)

        if item.content:
            item = item.model_copy(
                update={"content": render_request_content(item.content, item.event_token, item.time_spent)}
            )

        group_key = (item.event_token, item.time_spent)
        group = groups.get(group_key)
        if group is None:
            group = RequestGroup(event_token=item.event_token, time_spent=item.time_spent)
            groups[group_key] = group
        group.requests.append(item)

    return sorted(groups.values(), key=lambda g: g.time_spent)
