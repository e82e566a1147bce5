from datetime import datetime

from sqlmodel import Field, SQLModel


class CacheEntry(SQLModel, table=True):
    """Same-day operational state, one JSON document per key."""

    key: str = Field(primary_key=True, max_length=128)
    value: str
    updated_at: datetime = Field(default_factory=datetime.utcnow)
