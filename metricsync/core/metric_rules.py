"""MetricSync — Metric Classification Rules.

Keyword tables that decide a metric's kind (currency / percentage / number)
and its reporting category. Rules are ordered: the first rule whose keyword
appears in the lower-cased metric name wins. Extend the tables here; the
classification functions never need to change.
"""

from enum import Enum
from typing import Tuple


class MetricKind(str, Enum):
    """Display/unit semantics of a value."""

    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    NUMBER = "number"


class MetricCategory(str, Enum):
    """Reporting bucket a metric is grouped under."""

    SPEND_REVENUE = "spend-revenue"
    COST_PER_SHOW = "cost-per-show"
    FUNNEL_VOLUME = "funnel-volume"
    FUNNEL_CONVERSION = "funnel-conversion"


class KeywordRule:
    """Maps any of a set of name keywords to a classification target."""

    def __init__(self, target, keywords: Tuple[str, ...], description: str = ""):
        self.target = target
        self.keywords = keywords
        self.description = description

    def matches(self, name_lower: str) -> bool:
        return any(keyword in name_lower for keyword in self.keywords)

    def __repr__(self) -> str:
        return f"<KeywordRule {self.target.value} {self.keywords}>"


# ─────────────────────────────────────────────
# KIND RULES: used when the cell text has no currency or percent glyph
# ─────────────────────────────────────────────

CURRENCY_GLYPHS = ("$", "€", "£")
PERCENT_GLYPH = "%"

KIND_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule(
        MetricKind.NUMBER,
        (
            "roas",
            "roi",
            "bounce",
            "click",
            "impression",
            "lead",
            "conversion",
            "call",
            "show",
            "close",
            "email",
            "session",
        ),
        "Counts and ratios that read like rates or costs but are not",
    ),
    KeywordRule(
        MetricKind.PERCENTAGE,
        ("ctr", "rate", "percent", "ratio", "opt-in"),
        "Rate metrics",
    ),
    KeywordRule(
        MetricKind.CURRENCY,
        (
            "cost",
            "spend",
            "spent",
            "revenue",
            "price",
            "budget",
            "cpm",
            "cpc",
            "cpa",
            "aov",
        ),
        "Monetary metrics",
    ),
)

DEFAULT_KIND = MetricKind.NUMBER


# ─────────────────────────────────────────────
# CATEGORY RULES
# ─────────────────────────────────────────────

CATEGORY_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule(
        MetricCategory.SPEND_REVENUE,
        ("spend", "revenue", "cash", "roas", "roi", "budget"),
        "Spend & revenue",
    ),
    KeywordRule(
        MetricCategory.COST_PER_SHOW,
        ("cost per",),
        "Cost per show / cost per call",
    ),
    KeywordRule(
        MetricCategory.FUNNEL_VOLUME,
        (
            "lead",
            "sql",
            "calls booked",
            "live calls",
            "shows",
            "closed sales",
            "closes",
            "conversion",
        ),
        "Funnel volume",
    ),
    KeywordRule(
        MetricCategory.FUNNEL_CONVERSION,
        ("rate", "opt-in"),
        "Funnel conversion rates",
    ),
    # Legacy synonyms
    KeywordRule(
        MetricCategory.SPEND_REVENUE,
        ("click", "impression", "reach"),
        "Legacy traffic metrics",
    ),
    KeywordRule(
        MetricCategory.FUNNEL_VOLUME,
        ("email", "outreach", "cold", "spam", "unsubscribe"),
        "Legacy outreach metrics",
    ),
)

DEFAULT_CATEGORY = MetricCategory.SPEND_REVENUE


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────


def kind_from_name(metric_name: str) -> MetricKind:
    """Infer a metric kind from its display name alone."""
    name_lower = (metric_name or "").lower()
    for rule in KIND_RULES:
        if rule.matches(name_lower):
            return rule.target
    return DEFAULT_KIND


def categorize_metric(metric_name: str) -> MetricCategory:
    """Map a metric display name to its reporting category."""
    name_lower = (metric_name or "").lower()
    for rule in CATEGORY_RULES:
        if rule.matches(name_lower):
            return rule.target
    return DEFAULT_CATEGORY
