"""Tests for scope delete and natural-key bulk upsert."""

import pytest

from metricsync.core.errors import PersistenceError
from metricsync.models.metric_models import MetricObservation
from metricsync.models.sync_models import SyncReport, SyncScope
from metricsync.storage import metric_store
from metricsync.storage.metric_store import MetricStore, dedupe
from metricsync.storage.sync_status import SyncStatusTracker

SCOPE = SyncScope("user-1", "client-1", "sheet-abc", "Weekly")
OTHER_SCOPE = SyncScope("user-1", "client-2", "sheet-abc", "Weekly")


def _obs(metric_name="Leads", value=1.0, observed_on="2025-01-15", scope=SCOPE):
    return MetricObservation(
        owner_id=scope.owner_id,
        client_id=scope.client_id,
        source_id=scope.source_id,
        sheet_name=scope.sheet_name,
        metric_name=metric_name,
        category="funnel-volume",
        metric_kind="number",
        value=value,
        observed_on=observed_on,
    )


class TestBulkUpsert:
    def test_inserts_and_lists_in_order(self, session):
        store = MetricStore(session)
        count = store.bulk_upsert(
            [_obs("Shows", 2, "2025-01-16"), _obs("Leads", 5), _obs("Calls", 3)]
        )
        assert count == 3

        rows = store.list_scope(SCOPE)
        assert [(r.observed_on, r.metric_name) for r in rows] == [
            ("2025-01-15", "Calls"),
            ("2025-01-15", "Leads"),
            ("2025-01-16", "Shows"),
        ]

    def test_replaying_the_same_batch_is_idempotent(self, session):
        store = MetricStore(session)
        store.bulk_upsert([_obs("Leads", 5)])
        store.bulk_upsert([_obs("Leads", 7)])

        rows = store.list_scope(SCOPE)
        assert len(rows) == 1
        assert rows[0].value == 7

    def test_last_duplicate_in_batch_wins(self, session):
        assert dedupe([_obs(value=1), _obs(value=2)])[0].value == 2
        assert MetricStore(session).bulk_upsert([_obs(value=1), _obs(value=2)]) == 1
        assert MetricStore(session).list_scope(SCOPE)[0].value == 2

    def test_empty_batch(self, session):
        assert MetricStore(session).bulk_upsert([]) == 0

    def test_large_batch_is_chunked(self, session):
        observations = [_obs(f"Metric {i}", i) for i in range(250)]
        assert MetricStore(session).bulk_upsert(observations) == 250
        assert len(MetricStore(session).list_scope(SCOPE)) == 250

    def test_fallback_upsert_for_other_dialects(self, session, monkeypatch):
        monkeypatch.setattr(metric_store, "UPSERT_DIALECTS", {})
        store = MetricStore(session)
        store.bulk_upsert([_obs("Leads", 5), _obs("Shows", 1)])
        store.bulk_upsert([_obs("Leads", 9)])

        values = {r.metric_name: r.value for r in store.list_scope(SCOPE)}
        assert values == {"Leads": 9, "Shows": 1}

    def test_store_failure_is_persistence_error(self, session, engine):
        MetricObservation.__table__.drop(engine)  # type: ignore
        with pytest.raises(PersistenceError, match="Failed to insert metrics"):
            MetricStore(session).bulk_upsert([_obs()])


class TestDeleteScope:
    def test_only_the_scope_is_deleted(self, session):
        store = MetricStore(session)
        store.bulk_upsert([_obs("Leads"), _obs("Shows"), _obs("Leads", scope=OTHER_SCOPE)])

        assert store.delete_scope(SCOPE) == 2
        assert store.list_scope(SCOPE) == []
        assert len(store.list_scope(OTHER_SCOPE)) == 1

    def test_delete_empty_scope(self, session):
        assert MetricStore(session).delete_scope(SCOPE) == 0


class TestSyncStatusTracker:
    def test_lifecycle(self, session):
        tracker = SyncStatusTracker(session)
        assert tracker.get(SCOPE) is None

        tracker.mark_started(SCOPE)
        assert tracker.get(SCOPE).status == "syncing"

        tracker.mark_succeeded(SCOPE, 12, SyncReport(rows_skipped=2, rows_failed=1))
        status = tracker.get(SCOPE)
        assert status.status == "success"
        assert status.metrics_processed == 12
        assert status.rows_skipped == 2
        assert status.rows_failed == 1
        assert status.total_sync_count == 1
        assert status.successful_sync_count == 1
        assert status.last_successful_sync_at is not None

        tracker.mark_started(SCOPE)
        tracker.mark_failed(SCOPE, "No data found in sheet")
        status = tracker.get(SCOPE)
        assert status.status == "error"
        assert status.last_error == "No data found in sheet"
        assert status.total_sync_count == 2
        assert status.successful_sync_count == 1
