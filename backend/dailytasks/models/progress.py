from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class AccountLevelProgress(SQLModel, table=True):
    account_id: int = Field(foreign_key="account.id", primary_key=True)
    level_id: int = Field(foreign_key="level.id", primary_key=True)
    is_completed: bool = Field(default=False)
    completed_at: Optional[datetime] = None


class AccountPurchaseEventProgress(SQLModel, table=True):
    account_id: int = Field(foreign_key="account.id", primary_key=True)
    purchase_event_id: int = Field(foreign_key="purchaseevent.id", primary_key=True)
    is_completed: bool = Field(default=False)
    # Per-account override of the catalog's days_offset
    days_offset: Optional[int] = Field(default=None)
    time_spent: int = Field(default=0)
    completed_at: Optional[datetime] = None
