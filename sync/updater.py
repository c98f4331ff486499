"""
Incremental Synchronization Module
Drives one update of the local dictionary from the subscribed remote source
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, Optional, Tuple

from client.ocl_client import OclClient, OclResponse
from client.records import RecordKind, RemoteRecord
from config.settings import Config
from database.models import Item, ItemState, Subscription, Update, UpdateStatus, utcnow
from database.rdbms_connector import RDBMSConnector
from dictionary.base import DictionaryStore
from .errors import LedgerFailure, PersistenceFailure, SyncInProgressError
from .importer import Importer
from .ledger import UpdateService

logger = logging.getLogger(__name__)

RECORD_ORDER = (RecordKind.CONCEPT, RecordKind.MAPPING)


class Updater:
    """Runs incremental updates: fetch the delta, import concepts, then mappings"""

    def __init__(self, ocl_client: OclClient,
                 update_service: UpdateService,
                 importer: Importer,
                 stale_after: Optional[timedelta] = None):
        """
        Initialize updater

        Args:
            ocl_client: Remote delta source
            update_service: Ledger and item store
            importer: Record importer bound to the local dictionary
            stale_after: Age after which an in-progress run counts as abandoned
        """
        self.ocl_client = ocl_client
        self.update_service = update_service
        self.importer = importer
        self.stale_after = stale_after

    def run(self) -> Dict[str, Any]:
        """
        Perform one incremental update

        Returns:
            Dictionary with the outcome: status is one of not_configured,
            already_running or success

        Raises:
            TransportFailure, ProtocolFailure, LedgerFailure: the run failed;
            it has been recorded as failed and the checkpoint did not move
        """
        logger.info("\n" + "=" * 80)
        logger.info("INCREMENTAL UPDATE STARTED")
        logger.info("=" * 80)

        subscription = self.update_service.get_subscription()
        if subscription is None:
            logger.info("No subscription configured, nothing to update")
            return {"status": "not_configured"}

        last_successful = self.update_service.get_last_successful_update()
        updated_since = last_successful.ocl_date_started if last_successful else None

        if self.stale_after is not None:
            released = self.update_service.release_stale_updates(utcnow() - self.stale_after)
            if released:
                logger.warning(f"Released {released} abandoned update(s)")

        try:
            update = self.update_service.create_update(utcnow())
        except SyncInProgressError as e:
            logger.info(f"Skipping update: {e}")
            return {"status": "already_running"}

        try:
            updated_to, counts = self._run_update(update, subscription, updated_since)
        except Exception as e:
            logger.error(f"\n❌ Update {update.id} failed: {e}", exc_info=True)
            self._fail(update, e)
            raise

        try:
            self.update_service.finish_update(update, utcnow(), UpdateStatus.SUCCESS)
        except LedgerFailure as e:
            logger.error(f"\n❌ Update {update.id} could not be closed: {e}")
            self._fail(update, e)
            raise

        logger.info(f"\n📊 Summary:")
        for state in ItemState:
            logger.info(f"   {state.value}: {counts.get(state.value, 0)}")
        logger.info("\n" + "=" * 80)
        logger.info("✅ INCREMENTAL UPDATE COMPLETED")
        logger.info("=" * 80)

        return {
            "status": UpdateStatus.SUCCESS.value,
            "update_id": update.id,
            "updated_to": updated_to,
            "items": dict(counts)
        }

    def _run_update(self, update: Update, subscription: Subscription,
                    updated_since: Optional[datetime]) -> Tuple[datetime, Counter]:
        response = self.ocl_client.fetch_updates(subscription.url, subscription.token, updated_since)
        with response:
            self.update_service.update_ocl_date_started(update, response.updated_to)
            if response.record_count >= 0:
                logger.info(f"Delta reports {response.record_count} record(s)")

            counts: Counter = Counter()
            for record in self.ordered_records(response):
                item = self.importer.import_item(update, record)
                saved = self._save_item(item)
                counts[saved.state] += 1
        return response.updated_to, counts

    @staticmethod
    def ordered_records(response: OclResponse) -> Iterator[RemoteRecord]:
        """
        Records of the delta, every concept before any mapping

        A seekable payload is scanned lazily once per kind. Otherwise it is
        scanned once: concepts pass straight through and mappings wait in a
        queue until the payload is exhausted.
        """
        if response.seekable:
            for kind in RECORD_ORDER:
                logger.info(f"\n=== Importing {kind.section} ===")
                response.rewind()
                for record in response.iter_records():
                    if record.kind is kind:
                        yield record
            return

        deferred = []
        logger.info(f"\n=== Importing {RecordKind.CONCEPT.section} ===")
        for record in response.iter_records():
            if record.kind is RecordKind.CONCEPT:
                yield record
            else:
                deferred.append(record)
        logger.info(f"\n=== Importing {RecordKind.MAPPING.section} ===")
        yield from deferred

    def _save_item(self, item: Item) -> Item:
        try:
            self.update_service.save_item(item)
            return item
        except PersistenceFailure as e:
            logger.warning(f"  ✗ Could not save item {item.uuid}: {e.reason}")

        error_item = Item(
            update_id=item.update_id,
            uuid=item.uuid,
            type=item.type,
            state=ItemState.ERROR.value,
            url=item.url,
            version_url=item.version_url,
            error_message=f"Item could not be saved as {item.state}"
        )
        try:
            self.update_service.save_item(error_item)
        except PersistenceFailure as e:
            raise LedgerFailure(f"Cannot record items of update {item.update_id}: {e}") from e
        return error_item

    def _fail(self, update: Update, error: Exception):
        try:
            self.update_service.finish_update(update, utcnow(), UpdateStatus.FAILED, str(error) or repr(error))
        except LedgerFailure as e:
            logger.error(f"Could not mark update {update.id} as failed: {e}")


def perform_update(config: Config,
                   rdbms_connector: RDBMSConnector,
                   dictionary_store: DictionaryStore,
                   ocl_client: Optional[OclClient] = None) -> Dict[str, Any]:
    """
    High-level function to perform one incremental update

    Seeds the subscription from configuration when none exists yet.

    Args:
        config: Loaded configuration
        rdbms_connector: Ledger database connector
        dictionary_store: Local dictionary
        ocl_client: Optional client, built from config if not provided

    Returns:
        Dictionary with update status and statistics
    """
    update_service = UpdateService(rdbms_connector)

    if config.ocl.url and update_service.get_subscription() is None:
        update_service.save_subscription(config.ocl.url, config.ocl.token)

    updater = Updater(
        ocl_client=ocl_client or OclClient(config.ocl),
        update_service=update_service,
        importer=Importer(dictionary_store),
        stale_after=timedelta(minutes=config.system.stale_run_minutes)
    )
    return updater.run()
