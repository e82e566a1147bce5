from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from dailytasks.models.game import Game


class PurchaseEvent(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("game_id", "event_token", name="uq_purchase_game_token"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    game_id: int = Field(foreign_key="game.id", index=True)
    event_token: str
    is_restricted: bool = Field(default=False)
    days_offset: Optional[int] = Field(default=None)
    max_days_offset: Optional[int] = Field(default=None)  # Only enforced when is_restricted
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    game: "Game" = Relationship(back_populates="purchase_events")
