from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from dailytasks.models.account import Account
    from dailytasks.models.level import Level
    from dailytasks.models.purchase_event import PurchaseEvent


class Game(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    accounts: List["Account"] = Relationship(back_populates="game")
    levels: List["Level"] = Relationship(back_populates="game")
    purchase_events: List["PurchaseEvent"] = Relationship(back_populates="game")
