"""
Update Ledger Module
Persists the subscription, the history of synchronization runs and the
per-record audit items. Every write is committed on its own.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from sqlalchemy import func, select, update as sql_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import Item, ItemState, Subscription, Update, UpdateStatus, utcnow
from database.rdbms_connector import RDBMSConnector
from .errors import LedgerFailure, PersistenceFailure, SyncInProgressError

logger = logging.getLogger(__name__)

ACTIVE_LOCK = 1


class UpdateService:
    """Ledger of subscription, runs and items for incremental sync"""

    def __init__(self, rdbms_connector: RDBMSConnector):
        """
        Initialize update service

        Args:
            rdbms_connector: Connector for the ledger database
        """
        self.rdbms = rdbms_connector

    @contextmanager
    def _ledger(self, action: str) -> Iterator[Session]:
        try:
            with self.rdbms.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            raise LedgerFailure(f"Could not {action}: {e}") from e

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def get_subscription(self) -> Optional[Subscription]:
        """The installation's subscription, or None when not configured"""
        with self._ledger("read subscription") as session:
            return session.execute(
                select(Subscription).order_by(Subscription.id).limit(1)
            ).scalar_one_or_none()

    def save_subscription(self, url: str, token: Optional[str] = None) -> Subscription:
        """
        Create the subscription or point the existing one somewhere else

        Args:
            url: Remote endpoint
            token: Optional access token
        """
        with self._ledger("save subscription") as session:
            subscription = session.execute(
                select(Subscription).order_by(Subscription.id).limit(1)
            ).scalar_one_or_none()
            if subscription is None:
                subscription = Subscription(url=url, token=token)
                session.add(subscription)
                logger.info(f"✓ Subscribed to {url}")
            else:
                subscription.url = url
                subscription.token = token
                subscription.date_changed = utcnow()
                logger.info(f"✓ Subscription changed to {url}")
        return subscription

    def unsubscribe(self) -> int:
        """Remove the subscription; run history is kept"""
        with self._ledger("remove subscription") as session:
            subscriptions = session.execute(select(Subscription)).scalars().all()
            for subscription in subscriptions:
                session.delete(subscription)
        return len(subscriptions)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def get_last_update(self) -> Optional[Update]:
        """Most recently started run regardless of outcome"""
        with self._ledger("read last update") as session:
            return session.execute(
                select(Update).order_by(Update.local_date_started.desc(), Update.id.desc()).limit(1)
            ).scalar_one_or_none()

    def get_last_successful_update(self) -> Optional[Update]:
        """Most recent successful run; its ocl_date_started is the resume point"""
        with self._ledger("read last successful update") as session:
            return session.execute(
                select(Update)
                .where(Update.status == UpdateStatus.SUCCESS.value)
                .order_by(Update.local_date_started.desc(), Update.id.desc())
                .limit(1)
            ).scalar_one_or_none()

    def get_in_progress_update(self) -> Optional[Update]:
        with self._ledger("read in-progress update") as session:
            return session.execute(
                select(Update).where(Update.active_lock.is_not(None))
            ).scalar_one_or_none()

    def get_updates(self, limit: int = 20) -> List[Update]:
        """Run history, newest first"""
        with self._ledger("read updates") as session:
            return list(session.execute(
                select(Update).order_by(Update.local_date_started.desc(), Update.id.desc()).limit(limit)
            ).scalars())

    def create_update(self, started_at: Optional[datetime] = None) -> Update:
        """
        Open a new run in progress

        Args:
            started_at: Local start time, now if not given

        Returns:
            The persisted Update

        Raises:
            SyncInProgressError: another run is in progress
            LedgerFailure: the ledger cannot be written
        """
        update = Update(
            local_date_started=started_at or utcnow(),
            status=UpdateStatus.IN_PROGRESS.value,
            active_lock=ACTIVE_LOCK
        )
        try:
            with self.rdbms.session_scope() as session:
                running = session.execute(
                    select(Update.id).where(Update.active_lock.is_not(None))
                ).first()
                if running is not None:
                    raise SyncInProgressError(f"Update {running.id} is still in progress")
                session.add(update)
        except IntegrityError as e:
            # Lost the race against another process between the check and the insert
            raise SyncInProgressError("Another update started concurrently") from e
        except SQLAlchemyError as e:
            raise LedgerFailure(f"Could not create update: {e}") from e
        logger.info(f"✓ Started update {update.id}")
        return update

    def update_ocl_date_started(self, update: Update, updated_to: datetime):
        """Record the server-reported "updated to" timestamp of a run"""
        with self._ledger(f"record server timestamp of update {update.id}") as session:
            session.execute(
                sql_update(Update).where(Update.id == update.id).values(ocl_date_started=updated_to)
            )
        update.ocl_date_started = updated_to

    def finish_update(self, update: Update, finished_at: Optional[datetime] = None,
                      status: UpdateStatus = UpdateStatus.SUCCESS,
                      error_message: Optional[str] = None):
        """
        Close a run and release the in-progress gate

        Args:
            update: Run to close
            finished_at: Local stop time, now if not given
            status: Final outcome
            error_message: Failure description for failed runs

        Raises:
            LedgerFailure: the run is no longer in progress, or the ledger cannot be written
        """
        finished_at = finished_at or utcnow()
        values = {
            "local_date_stopped": finished_at,
            "status": UpdateStatus(status).value,
            "error_message": error_message,
            "active_lock": None
        }
        with self._ledger(f"finish update {update.id}") as session:
            result = session.execute(
                sql_update(Update)
                .where(Update.id == update.id)
                .where(Update.active_lock.is_not(None))
                .values(**values)
            )
        # Released as stale by another process; its outcome stands
        if result.rowcount == 0:
            raise LedgerFailure(f"Update {update.id} is no longer in progress")
        for key, value in values.items():
            setattr(update, key, value)
        logger.info(f"✓ Update {update.id} finished: {values['status']}")

    def release_stale_updates(self, older_than: datetime) -> int:
        """
        Fail runs left in progress since before the given time

        A process that died mid-run never closes its update; this reopens
        the gate for the next run.

        Returns:
            Number of runs released
        """
        with self._ledger("release stale updates") as session:
            stale = session.execute(
                select(Update)
                .where(Update.active_lock.is_not(None))
                .where(Update.local_date_started < older_than)
            ).scalars().all()
            now = utcnow()
            for update in stale:
                update.status = UpdateStatus.FAILED.value
                update.local_date_stopped = now
                update.active_lock = None
                update.error_message = (
                    f"Abandoned: still in progress at {now.isoformat()}, "
                    f"started {update.local_date_started.isoformat()}"
                )
                logger.warning(f"Released stale update {update.id}")
        return len(stale)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def save_item(self, item: Item):
        """
        Insert or update an item keyed by (uuid, update)

        Raises:
            PersistenceFailure: the store rejected the write
        """
        try:
            with self.rdbms.session_scope() as session:
                existing = session.execute(
                    select(Item)
                    .where(Item.uuid == item.uuid)
                    .where(Item.update_id == item.update_id)
                ).scalar_one_or_none()
                if existing is None:
                    session.add(item)
                else:
                    existing.type = item.type
                    existing.state = item.state
                    existing.url = item.url
                    existing.version_url = item.version_url
                    existing.error_message = item.error_message
        except SQLAlchemyError as e:
            raise PersistenceFailure(item.uuid, f"could not save item: {e}") from e

    def get_items(self, update: Update, state: Optional[ItemState] = None) -> List[Item]:
        """Items of a run in save order, optionally only those in one state"""
        with self._ledger(f"read items of update {update.id}") as session:
            query = select(Item).where(Item.update_id == update.id)
            if state is not None:
                query = query.where(Item.state == ItemState(state).value)
            return list(session.execute(query.order_by(Item.id)).scalars())

    def count_items_by_state(self, update: Update) -> Dict[str, int]:
        with self._ledger(f"count items of update {update.id}") as session:
            rows = session.execute(
                select(Item.state, func.count())
                .where(Item.update_id == update.id)
                .group_by(Item.state)
            ).all()
        return {state: count for state, count in rows}
