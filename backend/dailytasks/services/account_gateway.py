"""
Account Data Gateway - the engine's only path to the persisted catalog.

AccountDataGateway is the port; SqlAccountDataGateway implements it on the
SQLModel tables. Every SQLAlchemy failure surfaces as GatewayError so the
planner can skip the affected account and the recorder can abort cleanly.
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from dailytasks.models.account import Account
from dailytasks.models.game import Game
from dailytasks.models.level import Level
from dailytasks.models.progress import AccountLevelProgress, AccountPurchaseEventProgress
from dailytasks.models.purchase_event import PurchaseEvent
from dailytasks.services.daily_requests import build_daily_requests
from dailytasks.services.daily_task_types import AccountInfo, RequestItem
from dailytasks.services.errors import GatewayError

logger = logging.getLogger(__name__)


class AccountDataGateway(Protocol):
    def list_games(self) -> List[Game]: ...

    def list_accounts(self, game_id: int) -> List[AccountInfo]: ...

    def list_levels(self, game_id: int) -> List[Level]: ...

    def list_purchase_events(self, game_id: int) -> List[PurchaseEvent]: ...

    def list_candidate_requests(self, account_id: int, target_date: date) -> List[RequestItem]: ...

    def ensure_progress_row(self, account_id: int, item: RequestItem) -> None: ...

    def set_completed(self, account_id: int, item: RequestItem, is_completed: bool) -> None: ...

    def mark_completed(self, account_id: int, item: RequestItem) -> None: ...


def account_info(account: Account) -> AccountInfo:
    return AccountInfo(
        id=account.id,
        game_id=account.game_id,
        name=account.name,
        start_date=account.start_date,
        start_time=account.start_time,
        request_template=account.request_template or "",
    )


class SqlAccountDataGateway:
    """Gateway over the catalog tables; opens one short session per call."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def list_games(self) -> List[Game]:
        try:
            with Session(self.engine) as session:
                return list(session.exec(select(Game).order_by(Game.id)).all())
        except SQLAlchemyError as e:
            raise GatewayError(f"Failed to list games: {e}") from e

    def list_accounts(self, game_id: int) -> List[AccountInfo]:
        try:
            with Session(self.engine) as session:
                accounts = session.exec(select(Account).where(Account.game_id == game_id).order_by(Account.id)).all()
                return [account_info(a) for a in accounts]
        except SQLAlchemyError as e:
            raise GatewayError(f"Failed to list accounts for game {game_id}: {e}") from e

    def list_levels(self, game_id: int) -> List[Level]:
        try:
            with Session(self.engine) as session:
                return list(session.exec(select(Level).where(Level.game_id == game_id).order_by(Level.id)).all())
        except SQLAlchemyError as e:
            raise GatewayError(f"Failed to list levels for game {game_id}: {e}") from e

    def list_purchase_events(self, game_id: int) -> List[PurchaseEvent]:
        try:
            with Session(self.engine) as session:
                return list(
                    session.exec(
                        select(PurchaseEvent).where(PurchaseEvent.game_id == game_id).order_by(PurchaseEvent.id)
                    ).all()
                )
        except SQLAlchemyError as e:
            raise GatewayError(f"Failed to list purchase events for game {game_id}: {e}") from e

    def list_candidate_requests(self, account_id: int, target_date: date) -> List[RequestItem]:
        try:
            with Session(self.engine) as session:
                account = session.get(Account, account_id)
                if account is None:
                    raise GatewayError(f"Account {account_id} not found", account_id=account_id)

                levels = session.exec(select(Level).where(Level.game_id == account.game_id)).all()
                purchase_events = session.exec(
                    select(PurchaseEvent).where(PurchaseEvent.game_id == account.game_id).order_by(PurchaseEvent.id)
                ).all()
                completed_level_ids = set(
                    session.exec(
                        select(AccountLevelProgress.level_id).where(
                            AccountLevelProgress.account_id == account_id,
                            AccountLevelProgress.is_completed == True,  # noqa: E712
                        )
                    ).all()
                )
                purchase_progress = {
                    p.purchase_event_id: p
                    for p in session.exec(
                        select(AccountPurchaseEventProgress).where(
                            AccountPurchaseEventProgress.account_id == account_id
                        )
                    ).all()
                }

                return build_daily_requests(
                    account_info(account),
                    target_date,
                    levels,
                    purchase_events,
                    completed_level_ids,
                    purchase_progress,
                )
        except SQLAlchemyError as e:
            raise GatewayError(f"Failed to load requests for account {account_id}: {e}", account_id=account_id) from e

    def _progress_key(self, account_id: int, item: RequestItem):
        if not item.is_purchase:
            return AccountLevelProgress, (account_id, item.level_id)
        if item.purchase_event_id is None:
            raise GatewayError(
                f"Purchase request {item.event_token!r} has no purchase event id", account_id=account_id
            )
        return AccountPurchaseEventProgress, (account_id, item.purchase_event_id)

    def ensure_progress_row(self, account_id: int, item: RequestItem) -> None:
        """Create the progress row if missing; an existing row is left untouched."""
        model, key = self._progress_key(account_id, item)
        try:
            with Session(self.engine) as session:
                if session.get(model, key) is not None:
                    return
                if model is AccountLevelProgress:
                    row = AccountLevelProgress(account_id=account_id, level_id=item.level_id)
                else:
                    row = AccountPurchaseEventProgress(
                        account_id=account_id,
                        purchase_event_id=item.purchase_event_id,
                        time_spent=item.time_spent,
                    )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.debug("Progress row for account %s already exists", account_id)
        except SQLAlchemyError as e:
            raise GatewayError(f"Failed to create progress for account {account_id}: {e}", account_id=account_id) from e

    def set_completed(self, account_id: int, item: RequestItem, is_completed: bool) -> None:
        model, key = self._progress_key(account_id, item)
        try:
            with Session(self.engine) as session:
                row: Optional[object] = session.get(model, key)
                if row is None:
                    raise GatewayError(
                        f"No progress row for account {account_id} token {item.event_token!r}", account_id=account_id
                    )
                row.is_completed = is_completed
                row.completed_at = datetime.utcnow() if is_completed else None
                if model is AccountPurchaseEventProgress and is_completed:
                    row.time_spent = item.time_spent
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            raise GatewayError(f"Failed to update progress for account {account_id}: {e}", account_id=account_id) from e

    def mark_completed(self, account_id: int, item: RequestItem) -> None:
        self.ensure_progress_row(account_id, item)
        self.set_completed(account_id, item, True)
