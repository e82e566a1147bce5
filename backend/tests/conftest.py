import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import date, datetime, time, timedelta  # noqa: E402
from typing import Dict, List, Optional, Set  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from dailytasks.database import init_db  # noqa: E402
from dailytasks.main import app  # noqa: E402
from dailytasks.models import Account, Game, Level, PurchaseEvent  # noqa: E402
from dailytasks.routes.daily_tasks import get_engine  # noqa: E402
from dailytasks.services.account_gateway import SqlAccountDataGateway  # noqa: E402
from dailytasks.services.daily_task_engine import DailyTaskEngine  # noqa: E402
from dailytasks.services.daily_task_types import AccountInfo, RequestItem  # noqa: E402
from dailytasks.services.errors import GatewayError  # noqa: E402
from dailytasks.services.operational_cache import MemoryCacheStore, OperationalCache  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so every session shares one database
# 2. Tables dropped and recreated per test (catalog ids start at 1 each time)
# 3. The app's engine dependency is overridden in client_fixture
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TODAY = date(2026, 3, 10)
ALPHA_TEMPLATE = "GET /track?token={event_token}&age={time_spent}"


class FrozenClock:
    """Manually advanced clock handed to the engine."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway:
    """In-memory gateway; fail_* sets inject GatewayErrors."""

    def __init__(self):
        self.games: List[Game] = []
        self.accounts: Dict[int, List[AccountInfo]] = {}
        self.levels: Dict[int, List[Level]] = {}
        self.purchase_events: Dict[int, List[PurchaseEvent]] = {}
        self.requests: Dict[int, List] = {}
        self.fail_accounts: Set[int] = set()
        self.fail_games: Set[int] = set()
        self.fail_writes = False
        self.marked: List[tuple] = []

    def add_game(self, game_id: int, name: str, levels: Optional[List[Level]] = None, purchase_events=None):
        self.games.append(Game(id=game_id, name=name))
        self.accounts[game_id] = []
        self.levels[game_id] = levels or []
        self.purchase_events[game_id] = purchase_events or []

    def add_account(self, account: AccountInfo, requests: List):
        self.accounts[account.game_id].append(account)
        self.requests[account.id] = requests

    def list_games(self):
        return list(self.games)

    def list_accounts(self, game_id):
        if game_id in self.fail_games:
            raise GatewayError(f"game {game_id} unavailable")
        return list(self.accounts.get(game_id, []))

    def list_levels(self, game_id):
        return list(self.levels.get(game_id, []))

    def list_purchase_events(self, game_id):
        return list(self.purchase_events.get(game_id, []))

    def list_candidate_requests(self, account_id, target_date):
        if account_id in self.fail_accounts:
            raise GatewayError(f"account {account_id} unavailable", account_id=account_id)
        return list(self.requests.get(account_id, []))

    def ensure_progress_row(self, account_id, item):
        pass

    def set_completed(self, account_id, item, is_completed):
        if self.fail_writes:
            raise GatewayError("write failed", account_id=account_id)
        self.marked.append((account_id, item.event_token, item.kind))

    def mark_completed(self, account_id, item):
        self.ensure_progress_row(account_id, item)
        self.set_completed(account_id, item, True)


def make_account(
    account_id: int,
    game_id: int = 1,
    start: datetime = datetime(2026, 3, 10, 8, 0),
    request_template: str = "",
) -> AccountInfo:
    return AccountInfo(
        id=account_id,
        game_id=game_id,
        name=f"Account {account_id}",
        start_date=start.date(),
        start_time=start.time(),
        request_template=request_template,
    )


def level_pair(token: str, time_spent: int, level_id: int) -> List[RequestItem]:
    return [
        RequestItem(
            kind="session",
            event_token=token,
            time_spent=time_spent,
            level_id=level_id,
            level_name=token.upper(),
            request_type="Level Session",
        ),
        RequestItem(
            kind="event",
            event_token=token,
            time_spent=time_spent,
            level_id=level_id,
            level_name=token.upper(),
            request_type="Level Event",
        ),
    ]


def make_levels(game_id: int, rows: List[tuple]) -> List[Level]:
    """rows: (level_id, token, days_offset, time_spent)"""
    return [
        Level(id=lid, game_id=game_id, event_token=token, level_name=token.upper(), days_offset=day, time_spent=ts)
        for lid, token, day, ts in rows
    ]


@pytest.fixture(name="clock")
def clock_fixture():
    return FrozenClock(datetime.combine(TODAY, time(12, 0)))


@pytest.fixture(name="fake_gateway")
def fake_gateway_fixture():
    return FakeGateway()


@pytest.fixture(name="cache")
def cache_fixture():
    return OperationalCache(MemoryCacheStore())


@pytest.fixture(name="db_engine")
def db_engine_fixture():
    SQLModel.metadata.drop_all(test_engine)
    init_db(test_engine)
    yield test_engine
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="session")
def session_fixture(db_engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture(name="sql_gateway")
def sql_gateway_fixture(db_engine):
    return SqlAccountDataGateway(db_engine)


@pytest.fixture(name="seeded_catalog")
def seeded_catalog_fixture(session: Session):
    """
    One game, two accounts started on TODAY at 08:00 and 09:00.
    Day-0 levels: l1 (120s), l2 (300s). Day-1 level: l3 (600s).
    One purchase event due on day 0.
    Only alpha has a request template.
    """
    game = Game(name="Farm Saga")
    session.add(game)
    session.commit()
    session.refresh(game)

    levels = [
        Level(game_id=game.id, event_token="l1", level_name="Level 1", days_offset=0, time_spent=120),
        Level(game_id=game.id, event_token="l2", level_name="Level 2", days_offset=0, time_spent=300),
        Level(game_id=game.id, event_token="l3", level_name="Level 3", days_offset=1, time_spent=600),
    ]
    purchase = PurchaseEvent(game_id=game.id, event_token="buy1", days_offset=0)
    accounts = [
        Account(game_id=game.id, name="alpha", start_date=TODAY, start_time=time(8, 0), request_template=ALPHA_TEMPLATE),
        Account(game_id=game.id, name="beta", start_date=TODAY, start_time=time(9, 0)),
    ]
    for row in levels + [purchase] + accounts:
        session.add(row)
    session.commit()
    for row in levels + [purchase] + accounts:
        session.refresh(row)

    return {"game": game, "levels": levels, "purchase": purchase, "accounts": accounts}


@pytest.fixture(name="sql_engine")
def sql_engine_fixture(db_engine, sql_gateway, clock):
    return DailyTaskEngine(sql_gateway, OperationalCache(MemoryCacheStore()), clock=clock, jitter_seconds=0)


@pytest.fixture(name="client")
def client_fixture(sql_engine: DailyTaskEngine):
    """Test client whose engine dependency is the test engine"""
    app.dependency_overrides[get_engine] = lambda: sql_engine

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
