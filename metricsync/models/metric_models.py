"""MetricSync — Persistent Models.

MetricObservation is the unit of persistence. Every sync run replaces the
observations of one scope (owner, client, source, sheet) as a batch.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel, UniqueConstraint

SOURCE_KIND_GOOGLE_SHEETS = "google_sheets"

NATURAL_KEY = (
    "owner_id",
    "client_id",
    "source_id",
    "sheet_name",
    "tab_name",
    "metric_name",
    "observed_on",
)


class MetricObservation(SQLModel, table=True):
    """One typed numeric value for one metric on one reporting date.

    Unique constraint on the natural key lets a bulk upsert replay safely.
    """

    __tablename__ = "metrics"
    __table_args__ = (UniqueConstraint(*NATURAL_KEY, name="uq_metric_observation"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    client_id: str = Field(default="", index=True)
    source_id: str = Field(index=True, description="Spreadsheet ID")
    sheet_name: str = Field(index=True)
    tab_name: str = Field(default="Main")
    tab_ref: str = Field(default="0", description="Tab ID within the spreadsheet")
    source_kind: str = Field(default=SOURCE_KIND_GOOGLE_SHEETS)
    metric_name: str = Field(index=True, description="Column header as shown")
    category: str = Field(description="Reporting bucket from metric_rules")
    metric_kind: str = Field(description="currency | percentage | number")
    value: float = Field(default=0.0)
    observed_on: str = Field(index=True, description="YYYY-MM-DD")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SyncStatus(SQLModel, table=True):
    """Outcome of the most recent sync run for a scope."""

    __tablename__ = "sync_status"
    __table_args__ = (
        UniqueConstraint(
            "owner_id", "client_id", "source_id", "sheet_name", name="uq_sync_scope"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    client_id: str = Field(default="")
    source_id: str = Field(index=True)
    sheet_name: str
    status: str = Field(default="never_synced", description="syncing | success | error")
    last_sync_at: Optional[datetime] = None
    last_successful_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    metrics_processed: int = 0
    rows_skipped: int = 0
    rows_failed: int = 0
    total_sync_count: int = 0
    successful_sync_count: int = 0


class ServiceSecret(SQLModel, table=True):
    """Key/value secret store for service credentials."""

    __tablename__ = "secrets"

    key: str = Field(primary_key=True)
    value: str
