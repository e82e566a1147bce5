"""Exception hierarchy for the daily task engine."""

from typing import Optional


class DailyTaskError(Exception):
    """Base class for engine errors."""


class GatewayError(DailyTaskError):
    """Reading from or writing to the account catalog failed."""

    def __init__(self, message: str, account_id: Optional[int] = None):
        super().__init__(message)
        self.account_id = account_id


class PlanInvariantError(DailyTaskError):
    """A caller referenced plan state that does not exist (programming error)."""


class CacheWriteError(DailyTaskError):
    """Persisting operational cache state failed; in-memory state is still valid."""
