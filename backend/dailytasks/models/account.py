from datetime import date, datetime, time
from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from dailytasks.models.game import Game


class Account(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    game_id: int = Field(foreign_key="game.id", index=True)
    name: str
    # Local wall-clock instant at which the account's in-game clock started
    start_date: date
    start_time: time = Field(default=time(0, 0))
    # Request text the operator sends; {event_token} and {time_spent} are filled per request
    request_template: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    game: "Game" = Relationship(back_populates="accounts")
