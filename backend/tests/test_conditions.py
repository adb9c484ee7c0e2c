"""Tests for row-level data-condition evaluation."""

from datetime import date

import pytest

from core.constants import ConditionOperator
from core.exceptions import ConditionEvaluationError
from triggers.base import ConditionSpec
from triggers.conditions import (
    RowConditionEvaluator,
    RowSource,
    count_matching_rows,
    matches,
    resolve_period_placeholders,
)


class StaticRowSource(RowSource):
    def __init__(self, rows=None, period=None, error=None):
        self.rows = rows
        self.period = period
        self.error = error

    async def load_rows(self, dataset_id, tenant_id):
        if self.error is not None:
            raise self.error
        return self.rows

    async def active_period(self, tenant_id):
        return self.period


ROWS = [
    {"client": "Acme", "due_date": "2026-10-05", "balance": 120},
    {"client": "Globex", "due_date": "2026-10-28", "balance": "80.5"},
    {"client": "Initech", "due_date": "2026-11-03", "balance": None},
    {"client": "Umbrella", "due_date": None, "balance": 0},
]


@pytest.mark.unit
class TestMatches:

    def test_between_is_inclusive(self):
        assert matches("2026-10-01", ConditionOperator.BETWEEN, ["2026-10-01", "2026-10-31"])
        assert matches("2026-10-31", ConditionOperator.BETWEEN, ["2026-10-01", "2026-10-31"])
        assert not matches("2026-11-01", ConditionOperator.BETWEEN, ["2026-10-01", "2026-10-31"])

    def test_between_needs_two_bounds(self):
        assert not matches("2026-10-05", ConditionOperator.BETWEEN, "2026-10-01")

    def test_numeric_comparisons(self):
        assert matches("80.5", ConditionOperator.GT, 80)
        assert matches(80, ConditionOperator.LTE, "80")
        assert not matches("n/a", ConditionOperator.GT, 1)

    def test_eq_compares_as_text(self):
        assert matches(True, ConditionOperator.EQ, "true")
        assert matches(42, ConditionOperator.EQ, "42")

    def test_contains_is_case_insensitive(self):
        assert matches("Globex Corp", ConditionOperator.CONTAINS, "globex")

    def test_null_cells_never_match(self):
        assert count_matching_rows(ROWS, "balance", ConditionOperator.GTE, 0) == 3


@pytest.mark.unit
def test_resolve_period_placeholders():
    value = ["{{period.start}}", "{{ period.end }}"]
    assert resolve_period_placeholders(value, date(2026, 10, 1), date(2026, 10, 31)) == [
        "2026-10-01",
        "2026-10-31",
    ]
    assert resolve_period_placeholders(5, date(2026, 10, 1), date(2026, 10, 31)) == 5


@pytest.mark.unit
def test_resolve_board_period_placeholders():
    value = ["{{board.periodStart}}", "{{ board.periodEnd }}", "{{board.owner}}"]
    assert resolve_period_placeholders(value, date(2026, 10, 1), date(2026, 10, 31)) == [
        "2026-10-01",
        "2026-10-31",
        "{{board.owner}}",
    ]


@pytest.mark.unit
class TestRowConditionEvaluator:

    def _spec(self, **overrides):
        data = {
            "dataset_id": "invoices",
            "column_key": "due_date",
            "operator": "between",
            "value": ["{{period.start}}", "{{period.end}}"],
            "period_scope": "current_period",
        }
        data.update(overrides)
        return ConditionSpec.from_dict(data)

    async def test_period_scoped_match(self):
        source = StaticRowSource(rows=ROWS, period=(date(2026, 10, 1), date(2026, 10, 31)))
        result = await RowConditionEvaluator(source).evaluate(self._spec(), "tenant-1")
        assert result.matched is True
        assert result.matched_row_count == 2
        assert result.period_key == "2026-10"

    async def test_no_period_key_without_scope(self):
        source = StaticRowSource(rows=ROWS)
        spec = self._spec(operator="gt", column_key="balance", value=100, period_scope=None)
        result = await RowConditionEvaluator(source).evaluate(spec, "tenant-1")
        assert result.matched is True
        assert result.matched_row_count == 1
        assert result.period_key is None

    async def test_missing_dataset_does_not_match(self):
        result = await RowConditionEvaluator(StaticRowSource(rows=None)).evaluate(
            self._spec(), "tenant-1"
        )
        assert result.matched is False

    async def test_source_failure_is_an_evaluation_error(self):
        source = StaticRowSource(error=RuntimeError("connection reset"))
        with pytest.raises(ConditionEvaluationError, match="invoices"):
            await RowConditionEvaluator(source).evaluate(self._spec(), "tenant-1")
