"""MetricSync — Metric Store.

Scope delete and natural-key bulk upsert for MetricObservation rows.
PostgreSQL and SQLite use a native INSERT ... ON CONFLICT DO UPDATE; other
backends fall back to a select-then-update per row.
"""

from datetime import datetime, timezone
from typing import Dict, List, Sequence, Tuple

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from metricsync.core.errors import PersistenceError
from metricsync.core.logging import get_logger
from metricsync.models.metric_models import NATURAL_KEY, MetricObservation
from metricsync.models.sync_models import SyncScope

logger = get_logger("storage.metrics")

UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}
SQLITE_MAX_VARIABLES = 999
POSTGRES_BATCH_SIZE = 1000

_COLUMNS = [c.name for c in MetricObservation.__table__.columns if c.name != "id"]  # type: ignore
_UPDATE_COLUMNS = [c for c in _COLUMNS if c not in NATURAL_KEY]


def _scope_filters(scope: SyncScope) -> list:
    return [
        MetricObservation.owner_id == scope.owner_id,
        MetricObservation.client_id == scope.client_id,
        MetricObservation.source_id == scope.source_id,
        MetricObservation.sheet_name == scope.sheet_name,
    ]


def _natural_key(obs: MetricObservation) -> Tuple:
    return tuple(getattr(obs, field) for field in NATURAL_KEY)


def dedupe(observations: Sequence[MetricObservation]) -> List[MetricObservation]:
    """Collapse rows sharing a natural key; the last occurrence wins."""
    by_key: Dict[Tuple, MetricObservation] = {}
    for obs in observations:
        by_key.pop(_natural_key(obs), None)
        by_key[_natural_key(obs)] = obs
    return list(by_key.values())


class MetricStore:
    """Persistence for one session's worth of metric writes."""

    def __init__(self, session: Session):
        self.session = session

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def delete_scope(self, scope: SyncScope) -> int:
        """Delete every observation in scope. Returns the number removed."""
        try:
            result = self.session.connection().execute(
                delete(MetricObservation).where(*_scope_filters(scope))
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f"Failed to delete metrics: {e}") from e
        return result.rowcount or 0

    def bulk_upsert(self, observations: Sequence[MetricObservation]) -> int:
        """Insert or overwrite observations by natural key in one transaction."""
        unique = dedupe(observations)
        if not unique:
            return 0

        created_at = datetime.now(timezone.utc)
        rows = []
        for obs in unique:
            row = obs.model_dump(exclude={"id"})
            row["created_at"] = created_at
            rows.append(row)

        try:
            insert = UPSERT_DIALECTS.get(self.dialect)
            if insert is not None:
                self._native_upsert(insert, rows)
            else:
                self._row_by_row_upsert(rows)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f"Failed to insert metrics: {e}") from e

        logger.info(f"Upserted {len(rows)} metrics", extra={"count": len(rows)})
        return len(rows)

    def _native_upsert(self, insert, rows: List[dict]) -> None:
        if self.dialect == "sqlite":
            batch_size = max(1, SQLITE_MAX_VARIABLES // len(_COLUMNS))
        else:
            batch_size = POSTGRES_BATCH_SIZE

        conn = self.session.connection()
        for start in range(0, len(rows), batch_size):
            stmt = insert(MetricObservation.__table__).values(
                rows[start : start + batch_size]
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=list(NATURAL_KEY),
                set_={col: stmt.excluded[col] for col in _UPDATE_COLUMNS},
            )
            conn.execute(stmt)

    def _row_by_row_upsert(self, rows: List[dict]) -> None:
        for row in rows:
            existing = self.session.exec(
                select(MetricObservation).where(
                    *[getattr(MetricObservation, f) == row[f] for f in NATURAL_KEY]
                )
            ).first()
            if existing:
                for col in _UPDATE_COLUMNS:
                    setattr(existing, col, row[col])
                self.session.add(existing)
            else:
                self.session.add(MetricObservation(**row))
        self.session.flush()

    def list_scope(self, scope: SyncScope) -> List[MetricObservation]:
        """All observations in scope, ordered by date then metric name."""
        return list(
            self.session.exec(
                select(MetricObservation)
                .where(*_scope_filters(scope))
                .order_by(MetricObservation.observed_on, MetricObservation.metric_name)  # type: ignore
            ).all()
        )
