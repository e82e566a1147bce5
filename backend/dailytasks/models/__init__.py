from dailytasks.models.account import Account
from dailytasks.models.cache_entry import CacheEntry
from dailytasks.models.game import Game
from dailytasks.models.level import Level
from dailytasks.models.progress import AccountLevelProgress, AccountPurchaseEventProgress
from dailytasks.models.purchase_event import PurchaseEvent

__all__ = [
    "Game",
    "Account",
    "Level",
    "PurchaseEvent",
    "AccountLevelProgress",
    "AccountPurchaseEventProgress",
    "CacheEntry",
]
