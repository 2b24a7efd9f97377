"""MetricSync — Cell Value & Date Normalizers.

Spreadsheet cells arrive as display text ("$1,234.50", "(500)", "12.5%",
"01/15/2025", "45672"). These helpers turn them into typed values.
Neither normalizer ever raises: unparsable values become 0, unparsable dates
become today's date.
"""

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, NamedTuple, Optional

from metricsync.config import settings
from metricsync.core.metric_rules import (
    CURRENCY_GLYPHS,
    PERCENT_GLYPH,
    MetricKind,
    kind_from_name,
)

# Day zero of the 1900 spreadsheet serial date system (accounts for the
# fictitious 1900-02-29).
SERIAL_DATE_EPOCH = date(1899, 12, 30)

EMPTY_MARKERS = ("", "-")

_STRIP_CHARS = re.compile(r"[$€£,%]")
_NUMERIC_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_SERIAL = re.compile(r"^\d+(?:\.\d+)?$")
_DATE_SEPARATORS = re.compile(r"[/\-]")
_TIME_SUFFIX = re.compile(r"[ T]\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:\s*[AaPp][Mm])?$")

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
)


_SPREADSHEET_URL = re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)")


def extract_spreadsheet_id(value: str) -> str:
    """Accept a bare spreadsheet ID or a full spreadsheet URL."""
    value = (value or "").strip()
    match = _SPREADSHEET_URL.search(value)
    return match.group(1) if match else value


class NormalizedValue(NamedTuple):
    value: float
    kind: MetricKind


# ─────────────────────────────────────────────
# VALUES
# ─────────────────────────────────────────────


def _cell_text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def parse_value(raw: Any) -> float:
    """Parse cell text into a finite float.

    Handles accounting negatives "(1,234)", currency glyphs, thousands
    separators and percent signs. "12.5%" parses to 12.5, not 0.125.
    Anything without a numeric prefix parses to 0.0.
    """
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw) if math.isfinite(raw) else 0.0

    text = _cell_text(raw)
    if text in EMPTY_MARKERS:
        return 0.0

    if text.startswith("(") and text.endswith(")"):
        text = "-" + text[1:-1]

    cleaned = _STRIP_CHARS.sub("", text).strip()
    match = _NUMERIC_PREFIX.match(cleaned)
    if not match:
        return 0.0

    value = float(match.group(0))
    if not math.isfinite(value):
        return 0.0
    return value


def detect_kind(raw: Any, metric_name: str) -> MetricKind:
    """Infer the metric kind from glyphs in the cell, then from the name."""
    text = _cell_text(raw)
    if any(glyph in text for glyph in CURRENCY_GLYPHS):
        return MetricKind.CURRENCY
    if PERCENT_GLYPH in text:
        return MetricKind.PERCENTAGE
    return kind_from_name(metric_name)


def normalize_value(raw: Any, metric_name: str = "") -> NormalizedValue:
    """Return (value, kind) for a single cell."""
    return NormalizedValue(parse_value(raw), detect_kind(raw, metric_name))


# ─────────────────────────────────────────────
# DATES
# ─────────────────────────────────────────────


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _from_serial(days: float) -> Optional[date]:
    try:
        return SERIAL_DATE_EPOCH + timedelta(days=int(days))
    except OverflowError:
        return None


def _parse_calendar(text: str) -> Optional[date]:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _parse_parts(text: str, order: str) -> Optional[date]:
    text = _TIME_SUFFIX.sub("", text).strip()  # "1/15/2025 8:30:00"
    parts = [p.strip() for p in _DATE_SEPARATORS.split(text)]
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        return None

    first, second, third = parts
    if len(first) == 4:
        year, month, day = int(first), int(second), int(third)
    elif order == "DMY":
        day, month, year = int(first), int(second), int(third)
    else:
        month, day, year = int(first), int(second), int(third)

    if year < 100:
        year += 2000

    try:
        return date(year, month, day)
    except ValueError:
        return None


def normalize_date(
    raw: Any,
    today: Optional[date] = None,
    order: Optional[str] = None,
) -> str:
    """Normalize a date cell to "YYYY-MM-DD".

    Strategies, in order: spreadsheet serial day count, calendar formats,
    three-part split using the configured ambiguous order (MDY or DMY).
    Falls back to today's UTC date when nothing matches.
    """
    fallback = today or _today()
    order = (order or settings.date_order).upper()

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        parsed = _from_serial(raw) if math.isfinite(raw) else None
        return (parsed or fallback).isoformat()

    text = _cell_text(raw)
    if not text:
        return fallback.isoformat()

    parsed = None
    if _SERIAL.match(text):
        parsed = _from_serial(float(text))
    if parsed is None:
        parsed = _parse_calendar(text)
    if parsed is None:
        parsed = _parse_parts(text, order)

    return (parsed or fallback).isoformat()
