from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from dailytasks.models.game import Game


class Level(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("game_id", "event_token", name="uq_level_game_token"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    game_id: int = Field(foreign_key="game.id", index=True)
    event_token: str
    level_name: str
    days_offset: int = Field(default=0)  # Days after account start at which the level is due
    time_spent: int = Field(default=0)  # Target account age in seconds
    is_bonus: bool = Field(default=False)

    # Relationships
    game: "Game" = Relationship(back_populates="levels")
