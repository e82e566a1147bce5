"""
Daily task domain records.

Plan structures (RequestItem → RequestGroup → DailyTask → GameBatch) and the
per-account state the engine keeps between generate/complete calls. All of
them are pydantic models so the operational cache can round-trip them as JSON.
"""

from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import List, Literal, Optional, Set

from pydantic import BaseModel, Field

RequestKind = Literal["session", "event"]

REQUEST_TYPE_SESSION_ONLY = "Session Only"
REQUEST_TYPE_LEVEL_SESSION = "Level Session"
REQUEST_TYPE_LEVEL_EVENT = "Level Event"
REQUEST_TYPE_PURCHASE_SESSION = "Purchase Session"
REQUEST_TYPE_PURCHASE_EVENT = "Purchase Event"


class AccountInfo(BaseModel):
    id: int
    game_id: int
    name: str
    start_date: date
    start_time: time = time(0, 0)
    request_template: str = ""

    @property
    def start_instant(self) -> datetime:
        return datetime.combine(self.start_date, self.start_time)


class RequestItem(BaseModel):
    kind: RequestKind
    event_token: str
    time_spent: int = Field(ge=0)
    level_id: Optional[int] = None
    purchase_event_id: Optional[int] = None
    level_name: Optional[str] = None
    request_type: Optional[str] = None
    # Rendered request text (account template with token and timing filled in)
    content: str = ""

    @property
    def is_purchase(self) -> bool:
        return self.level_id is None


class RequestGroup(BaseModel):
    event_token: str
    time_spent: int
    requests: List[RequestItem] = Field(default_factory=list)

    @property
    def is_purchase(self) -> bool:
        return any(r.is_purchase for r in self.requests)


class DailyTask(BaseModel):
    account: AccountInfo
    target_date: date
    request_groups: List[RequestGroup] = Field(default_factory=list)
    # Indices into `requests` completed today
    completed: Set[int] = Field(default_factory=set)

    @property
    def requests(self) -> List[RequestItem]:
        return [r for g in self.request_groups for r in g.requests]

    def group_indices(self) -> List[List[int]]:
        """Flattened item indices belonging to each request group, in order."""
        out: List[List[int]] = []
        cursor = 0
        for group in self.request_groups:
            out.append(list(range(cursor, cursor + len(group.requests))))
            cursor += len(group.requests)
        return out


class GameBatch(BaseModel):
    batch_index: int
    tasks: List[DailyTask] = Field(default_factory=list)

    def task_for(self, account_id: int) -> Optional[DailyTask]:
        for task in self.tasks:
            if task.account.id == account_id:
                return task
        return None


class AccountCompletionRecord(BaseModel):
    account_id: int
    time_spent: int
    completion_time: datetime
    event_token: str
    level_id: Optional[int] = None


class AccountStartState(BaseModel):
    account_id: int
    start_time: datetime
    first_request_allowed_at: datetime
    is_initialized: bool = True


class AccountTaskAssignment(BaseModel):
    account_id: int
    assigned_time: datetime
    event_token: str
    time_spent: int


class CompletedDailyTask(BaseModel):
    id: str
    account_id: int
    account_name: str
    game_id: int
    game_name: str
    event_token: str
    time_spent: int
    completion_time: datetime
    completion_date: date
    level_id: Optional[int] = None
    level_name: Optional[str] = None
    request_type: str
    is_purchase: bool = False


class ReadinessState(str, Enum):
    ready = "ready"
    blocked = "blocked"
    cooldown = "cooldown"
    initial_delay = "initial_delay"


class Readiness(BaseModel):
    state: ReadinessState
    remaining_seconds: int = 0
    eta: Optional[datetime] = None

    @property
    def ready(self) -> bool:
        return self.state == ReadinessState.ready

    @property
    def blocked(self) -> bool:
        return self.state == ReadinessState.blocked
