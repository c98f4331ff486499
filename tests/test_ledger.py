"""Tests for the update ledger and item store"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from builders import UPDATED_TO
from config.settings import RDBMSConfig
from database.models import Item, ItemState, ItemType, UpdateStatus, utcnow
from database.rdbms_connector import RDBMSConnector
from sync.errors import LedgerFailure, PersistenceFailure, SyncInProgressError
from sync.ledger import UpdateService


def make_item(update, uuid, state=ItemState.ADDED, **fields):
    return Item(update_id=update.id, uuid=uuid, type=ItemType.CONCEPT.value, state=state.value, **fields)


class TestSubscription:

    def test_none_until_saved(self, update_service):
        assert update_service.get_subscription() is None

    def test_save_then_change(self, update_service):
        update_service.save_subscription("https://a.example.org/source/", "t1")
        update_service.save_subscription("https://b.example.org/source/", None)

        subscription = update_service.get_subscription()
        assert subscription.url == "https://b.example.org/source/"
        assert subscription.token is None
        assert subscription.date_changed is not None

    def test_unsubscribe_keeps_history(self, update_service, subscription):
        update = update_service.create_update()
        update_service.finish_update(update)

        assert update_service.unsubscribe() == 1
        assert update_service.get_subscription() is None
        assert update_service.get_last_update().id == update.id


class TestRuns:

    def test_single_run_in_progress(self, update_service):
        update_service.create_update()

        with pytest.raises(SyncInProgressError):
            update_service.create_update()

    def test_gate_reopens_after_finish(self, update_service):
        first = update_service.create_update()
        update_service.finish_update(first, status=UpdateStatus.FAILED, error_message="boom")

        second = update_service.create_update()

        assert second.id != first.id
        assert update_service.get_in_progress_update().id == second.id

    def test_gate_holds_across_connectors(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'ledger.db'}"
        first = RDBMSConnector(RDBMSConfig(connection_string=url))
        second = RDBMSConnector(RDBMSConfig(connection_string=url))
        first.create_schema()
        try:
            UpdateService(first).create_update()
            with pytest.raises(SyncInProgressError):
                UpdateService(second).create_update()
        finally:
            first.close()
            second.close()

    def test_last_successful_skips_failed_runs(self, update_service):
        base = utcnow() - timedelta(hours=3)
        good = update_service.create_update(started_at=base)
        update_service.update_ocl_date_started(good, UPDATED_TO)
        update_service.finish_update(good)
        bad = update_service.create_update(started_at=base + timedelta(hours=1))
        update_service.update_ocl_date_started(bad, UPDATED_TO + timedelta(days=1))
        update_service.finish_update(bad, status=UpdateStatus.FAILED, error_message="timeout")

        last = update_service.get_last_successful_update()

        assert last.id == good.id
        assert last.ocl_date_started == UPDATED_TO
        assert update_service.get_last_update().id == bad.id

    def test_finish_records_outcome(self, update_service):
        update = update_service.create_update()

        update_service.finish_update(update, status=UpdateStatus.FAILED, error_message="bad payload")

        stored = update_service.get_last_update()
        assert stored.status == UpdateStatus.FAILED.value
        assert stored.error_message == "bad payload"
        assert stored.is_stopped
        assert stored.active_lock is None
        assert update.status == UpdateStatus.FAILED.value

    def test_timestamps_come_back_in_utc(self, update_service):
        update = update_service.create_update()
        update_service.update_ocl_date_started(update, UPDATED_TO)

        stored = update_service.get_last_update()

        assert stored.ocl_date_started == UPDATED_TO
        assert stored.ocl_date_started.utcoffset() == timedelta(0)

    def test_release_stale_updates(self, update_service):
        update_service.create_update(started_at=utcnow() - timedelta(hours=10))

        released = update_service.release_stale_updates(utcnow() - timedelta(hours=6))

        assert released == 1
        assert update_service.get_in_progress_update() is None
        assert update_service.get_last_update().status == UpdateStatus.FAILED.value

    def test_released_run_cannot_finish(self, update_service):
        update = update_service.create_update(started_at=utcnow() - timedelta(hours=10))
        update_service.release_stale_updates(utcnow() - timedelta(hours=6))

        with pytest.raises(LedgerFailure, match="no longer in progress"):
            update_service.finish_update(update)

        last = update_service.get_last_update()
        assert last.status == UpdateStatus.FAILED.value
        assert last.error_message.startswith("Abandoned")
        assert update.status == UpdateStatus.IN_PROGRESS.value

    def test_finished_run_cannot_finish_again(self, update_service):
        update = update_service.create_update()
        update_service.finish_update(update, status=UpdateStatus.FAILED, error_message="boom")

        with pytest.raises(LedgerFailure):
            update_service.finish_update(update)

        assert update_service.get_last_update().status == UpdateStatus.FAILED.value

    def test_recent_run_is_not_stale(self, update_service):
        update_service.create_update()

        assert update_service.release_stale_updates(utcnow() - timedelta(hours=6)) == 0
        assert update_service.get_in_progress_update() is not None

    def test_get_updates_newest_first(self, update_service):
        ids = []
        for hours in (3, 2, 1):
            update = update_service.create_update(started_at=utcnow() - timedelta(hours=hours))
            update_service.finish_update(update)
            ids.append(update.id)

        assert [u.id for u in update_service.get_updates(limit=2)] == list(reversed(ids))[:2]

    def test_ledger_errors_are_wrapped(self, update_service):
        with patch.object(update_service.rdbms, "session_scope",
                          side_effect=OperationalError("SELECT", {}, Exception("database is locked"))):
            with pytest.raises(LedgerFailure):
                update_service.get_subscription()


class TestItems:

    def test_save_and_read_in_order(self, update_service):
        update = update_service.create_update()
        for uuid in ("c", "a", "b"):
            update_service.save_item(make_item(update, uuid))

        assert [item.uuid for item in update_service.get_items(update)] == ["c", "a", "b"]

    def test_duplicate_identifier_updates_in_place(self, update_service):
        update = update_service.create_update()
        update_service.save_item(make_item(update, "x"))
        update_service.save_item(make_item(update, "x", ItemState.ERROR, error_message="second pass"))

        items = update_service.get_items(update)
        assert len(items) == 1
        assert items[0].state == ItemState.ERROR.value
        assert items[0].error_message == "second pass"

    def test_same_identifier_in_another_run(self, update_service):
        first = update_service.create_update()
        update_service.save_item(make_item(first, "x"))
        update_service.finish_update(first)
        second = update_service.create_update()
        update_service.save_item(make_item(second, "x", ItemState.NO_OP))

        assert len(update_service.get_items(first)) == 1
        assert len(update_service.get_items(second)) == 1

    def test_filter_and_count_by_state(self, update_service):
        update = update_service.create_update()
        update_service.save_item(make_item(update, "a"))
        update_service.save_item(make_item(update, "b"))
        update_service.save_item(make_item(update, "c", ItemState.ERROR, error_message="bad"))

        assert [i.uuid for i in update_service.get_items(update, ItemState.ERROR)] == ["c"]
        assert update_service.count_items_by_state(update) == {"ADDED": 2, "ERROR": 1}

    def test_rejected_write_raises_persistence_failure(self, update_service):
        update = update_service.create_update()
        item = make_item(update, "x" * 600)
        with patch.object(update_service.rdbms, "session_scope",
                          side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
            with pytest.raises(PersistenceFailure) as exc_info:
                update_service.save_item(item)

        assert exc_info.value.identifier == item.uuid
