"""MetricSync — Sheet Rows → MetricObservation Transformer.

Each data row is one reporting date; every other column is a metric. Rows
whose metric cells are all zero or empty are template/future rows and are
dropped whole. A failing row or cell is recorded in the SyncReport and
skipped; it never aborts the batch.
"""

from datetime import date
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from metricsync.config import settings
from metricsync.core.logging import get_logger
from metricsync.core.metric_rules import categorize_metric
from metricsync.core.parsing import normalize_date, normalize_value, parse_value
from metricsync.models.metric_models import (
    SOURCE_KIND_GOOGLE_SHEETS,
    MetricObservation,
)
from metricsync.models.sync_models import SyncReport, SyncRequest

logger = get_logger("sheets.transformer")

DATE_COLUMN = "date"
DEFAULT_TAB_NAME = "Main"
DEFAULT_TAB_REF = "0"


class TransformResult(NamedTuple):
    observations: List[MetricObservation]
    report: SyncReport


def find_date_column(row: Dict[str, Any]) -> Optional[str]:
    """Return the header of the date column, matched case-insensitively."""
    for key in row:
        if str(key).strip().lower() == DATE_COLUMN:
            return key
    return None


def row_has_values(row: Dict[str, Any], date_column: Optional[str]) -> bool:
    """True when at least one non-date cell parses to a nonzero value."""
    return any(
        parse_value(value) != 0 for key, value in row.items() if key != date_column
    )


def resolve_tab(request: SyncRequest) -> Tuple[str, str]:
    """Tab name/ref from the request, else from a "Sheet - Tab" sheet name."""
    tab_name = request.tab_name
    if not tab_name:
        if " - " in request.sheet_name:
            tab_name = request.sheet_name.split(" - ")[1]
        else:
            tab_name = DEFAULT_TAB_NAME
    return tab_name, request.tab_ref or DEFAULT_TAB_REF


def _cell_is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def transform_rows(
    rows: List[Dict[str, Any]],
    request: SyncRequest,
    today: Optional[date] = None,
    date_order: Optional[str] = None,
) -> TransformResult:
    """Build observations for every kept row of a fetched range."""
    tab_name, tab_ref = resolve_tab(request)
    limit = settings.report_sample_errors
    report = SyncReport()
    observations: List[MetricObservation] = []

    for index, row in enumerate(rows, start=1):
        report.rows_seen += 1
        try:
            if not isinstance(row, dict):
                raise TypeError(f"expected a mapping, got {type(row).__name__}")

            date_column = find_date_column(row)
            if not row_has_values(row, date_column):
                report.rows_skipped += 1
                continue

            raw_date = row.get(date_column) if date_column else None
            observed_on = normalize_date(raw_date, today=today, order=date_order)
        except Exception as e:
            report.rows_failed += 1
            report.record_error(f"row {index}: {e}", limit)
            logger.warning(f"Skipping row {index}: {e}")
            continue

        report.rows_kept += 1
        for metric_name, raw_value in row.items():
            if metric_name == date_column or _cell_is_empty(raw_value):
                continue
            if not str(metric_name).strip():
                continue  # unnamed column
            try:
                value, kind = normalize_value(raw_value, metric_name)
                observations.append(
                    MetricObservation(
                        owner_id=request.owner_id,
                        client_id=request.client_id,
                        source_id=request.source_id,
                        sheet_name=request.sheet_name,
                        tab_name=tab_name,
                        tab_ref=tab_ref,
                        source_kind=SOURCE_KIND_GOOGLE_SHEETS,
                        metric_name=str(metric_name),
                        category=categorize_metric(str(metric_name)).value,
                        metric_kind=kind.value,
                        value=value,
                        observed_on=observed_on,
                    )
                )
            except Exception as e:
                report.cells_failed += 1
                report.record_error(f"row {index}, {metric_name!r}: {e}", limit)
                logger.warning(f"Skipping cell {metric_name!r} in row {index}: {e}")

    logger.info(
        f"Transformed {len(rows)} rows into {len(observations)} metrics "
        f"({report.rows_skipped} empty, {report.rows_failed} failed)",
        extra={"count": len(observations)},
    )
    return TransformResult(observations, report)
