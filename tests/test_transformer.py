"""Tests for the row filter and row → observation transform."""

from datetime import date

import pytest

from metricsync.connectors.sheets import transformer
from metricsync.connectors.sheets.transformer import (
    find_date_column,
    resolve_tab,
    row_has_values,
    transform_rows,
)
from metricsync.models.sync_models import SyncRequest

TODAY = date(2026, 3, 4)


def _request(**overrides) -> SyncRequest:
    payload = {
        "owner_id": "user-1",
        "client_id": "client-1",
        "source_id": "sheet-abc",
        "sheet_name": "Weekly",
        "mode": "client",
    }
    payload.update(overrides)
    return SyncRequest.model_validate(payload)


class TestRowFilter:
    def test_all_zero_row_is_dropped(self):
        row = {"Date": "01/15/2025", "Leads": "0", "Spend": "$0.00", "Rate": ""}
        assert row_has_values(row, "Date") is False

    def test_date_only_row_is_dropped(self):
        row = {"Date": "01/15/2025", "Leads": "", "Spend": "-"}
        assert row_has_values(row, "Date") is False

    def test_one_nonzero_cell_keeps_row(self):
        row = {"Date": "01/15/2025", "Leads": "0", "Spend": "$10"}
        assert row_has_values(row, "Date") is True

    def test_date_value_does_not_count(self):
        assert row_has_values({"date": "45672", "Leads": "0"}, "date") is False

    def test_find_date_column_is_case_insensitive(self):
        assert find_date_column({"DATE": "x", "Leads": "1"}) == "DATE"
        assert find_date_column({"Leads": "1"}) is None


class TestResolveTab:
    def test_explicit_tab(self):
        assert resolve_tab(_request(tab_name="Q1", tab_ref="123")) == ("Q1", "123")

    def test_tab_from_sheet_name(self):
        assert resolve_tab(_request(sheet_name="Acme - Funnel")) == ("Funnel", "0")

    def test_default_tab(self):
        assert resolve_tab(_request()) == ("Main", "0")


class TestTransformRows:
    def test_builds_one_observation_per_metric_cell(self):
        rows = [{"Date": "01/15/2025", "Ad Spend": "$1,000", "Close Rate": "25%"}]
        observations, report = transform_rows(rows, _request(), today=TODAY)

        by_name = {o.metric_name: o for o in observations}
        assert set(by_name) == {"Ad Spend", "Close Rate"}

        spend = by_name["Ad Spend"]
        assert spend.value == 1000
        assert spend.metric_kind == "currency"
        assert spend.category == "spend-revenue"
        assert spend.observed_on == "2025-01-15"
        assert spend.source_kind == "google_sheets"
        assert spend.tab_name == "Main"

        rate = by_name["Close Rate"]
        assert rate.value == 25
        assert rate.metric_kind == "percentage"
        assert rate.category == "funnel-conversion"

        assert report.rows_seen == 1
        assert report.rows_kept == 1

    def test_kept_row_keeps_zero_cells_but_skips_empty(self):
        rows = [{"Date": "2025-01-15", "Leads": "0", "Shows": "4", "Notes": ""}]
        observations, _ = transform_rows(rows, _request(), today=TODAY)
        assert sorted(o.metric_name for o in observations) == ["Leads", "Shows"]

    def test_empty_rows_are_counted_as_skipped(self):
        rows = [
            {"Date": "2025-01-15", "Leads": "3"},
            {"Date": "2025-01-16", "Leads": ""},
        ]
        observations, report = transform_rows(rows, _request(), today=TODAY)
        assert len(observations) == 1
        assert report.rows_skipped == 1
        assert report.rows_kept == 1

    def test_missing_date_column_uses_today(self):
        observations, _ = transform_rows([{"Leads": "3"}], _request(), today=TODAY)
        assert observations[0].observed_on == "2026-03-04"

    def test_unnamed_columns_are_ignored(self):
        observations, _ = transform_rows(
            [{"Date": "2025-01-15", "": "9", "Leads": "3"}], _request(), today=TODAY
        )
        assert [o.metric_name for o in observations] == ["Leads"]

    def test_invalid_row_is_isolated(self):
        rows = ["not a row", {"Date": "2025-01-15", "Leads": "3"}]
        observations, report = transform_rows(rows, _request(), today=TODAY)
        assert len(observations) == 1
        assert report.rows_failed == 1
        assert report.sample_errors[0].startswith("row 1:")

    def test_failing_cell_is_isolated(self, monkeypatch):
        original = transformer.categorize_metric

        def flaky_categorize(name):
            if name == "Broken":
                raise RuntimeError("bad rule")
            return original(name)

        monkeypatch.setattr(transformer, "categorize_metric", flaky_categorize)

        rows = [{"Date": "2025-01-15", "Broken": "1", "Leads": "3"}]
        observations, report = transform_rows(rows, _request(), today=TODAY)

        assert [o.metric_name for o in observations] == ["Leads"]
        assert report.cells_failed == 1
        assert "bad rule" in report.sample_errors[0]

    def test_sample_errors_are_capped(self, monkeypatch):
        monkeypatch.setattr(transformer.settings, "report_sample_errors", 2)
        rows = [None] * 4
        _, report = transform_rows(rows, _request(), today=TODAY)
        assert report.rows_failed == 4
        assert len(report.sample_errors) == 2

    @pytest.mark.parametrize("order, expected", [("MDY", "2025-02-03"), ("DMY", "2025-03-02")])
    def test_date_order_is_passed_through(self, order, expected):
        observations, _ = transform_rows(
            [{"Date": "02/03/2025", "Leads": "1"}], _request(), today=TODAY, date_order=order
        )
        assert observations[0].observed_on == expected
