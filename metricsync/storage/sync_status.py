"""MetricSync — Per-Scope Sync Status Tracking."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from metricsync.core.logging import get_logger
from metricsync.models.metric_models import SyncStatus
from metricsync.models.sync_models import SyncReport, SyncScope

logger = get_logger("storage.sync_status")


class SyncStatusTracker:
    """Records the outcome of each sync run.

    Status writes are bookkeeping: a failure here is logged and never
    changes the outcome of the run itself.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, scope: SyncScope) -> Optional[SyncStatus]:
        return self.session.exec(
            select(SyncStatus).where(
                SyncStatus.owner_id == scope.owner_id,
                SyncStatus.client_id == scope.client_id,
                SyncStatus.source_id == scope.source_id,
                SyncStatus.sheet_name == scope.sheet_name,
            )
        ).first()

    def _get_or_create(self, scope: SyncScope) -> SyncStatus:
        status = self.get(scope)
        if status is None:
            status = SyncStatus(
                owner_id=scope.owner_id,
                client_id=scope.client_id,
                source_id=scope.source_id,
                sheet_name=scope.sheet_name,
            )
        return status

    def _save(self, status: SyncStatus) -> None:
        try:
            self.session.add(status)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning(f"Could not update sync status: {e}")

    def mark_started(self, scope: SyncScope) -> None:
        status = self._get_or_create(scope)
        status.status = "syncing"
        status.last_sync_at = datetime.now(timezone.utc)
        status.total_sync_count += 1
        self._save(status)

    def mark_succeeded(
        self, scope: SyncScope, count: int, report: Optional[SyncReport] = None
    ) -> None:
        status = self._get_or_create(scope)
        now = datetime.now(timezone.utc)
        status.status = "success"
        status.last_sync_at = now
        status.last_successful_sync_at = now
        status.last_error = None
        status.metrics_processed = count
        status.rows_skipped = report.rows_skipped if report else 0
        status.rows_failed = report.rows_failed if report else 0
        status.successful_sync_count += 1
        self._save(status)

    def mark_failed(self, scope: SyncScope, message: str) -> None:
        status = self._get_or_create(scope)
        status.status = "error"
        status.last_sync_at = datetime.now(timezone.utc)
        status.last_error = message or "Unknown error"
        self._save(status)
