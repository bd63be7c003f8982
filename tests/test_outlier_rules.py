"""
Tests for the statistical outlier pass.

- Column statistics over non-zero values (Tukey hinges by default)
- Fence classification in precedence order, extreme-only and mild modes
- Rare-zero rule
- Decision application and the complete per-value log
"""

import numpy as np
import pandas as pd
import pytest
from unittest.mock import MagicMock

from qaqc.services.anomalies import (
    NO_NOTE,
    AnomalyKind,
    Decision,
    Direction,
    SchemaError,
    Sensitivity,
)
from qaqc.services.outlier_rules import (
    ColumnStatistics,
    OutlierRules,
    classify_value,
    compute_column_statistics,
    compute_quartiles,
    format_bound,
    scan_column,
    tukey_hinges,
)
from qaqc.services.reviewer import ScriptedReviewer


SCENARIO = [1, 2, 2, 3, 3, 3, 4, 4, 5, 100]


# ============================================================================
# STATISTICS
# ============================================================================

class TestTukeyHinges:
    def test_even_count(self):
        assert tukey_hinges(np.array(SCENARIO)) == (2.0, 4.0)

    def test_odd_count_includes_median_in_both_halves(self):
        assert tukey_hinges(np.array([1, 2, 3, 4, 5])) == (2.0, 4.0)

    def test_two_values(self):
        assert tukey_hinges(np.array([7, 3])) == (3.0, 7.0)

    def test_linear_method_matches_numpy(self):
        q1, q3 = compute_quartiles(np.array(SCENARIO, dtype=float), method="linear")
        assert q1 == pytest.approx(2.25)
        assert q3 == pytest.approx(4.0)


class TestComputeColumnStatistics:
    def test_scenario_statistics(self):
        stats = compute_column_statistics(pd.Series(SCENARIO, name="count"))
        assert stats.q1 == 2
        assert stats.q3 == 4
        assert stats.iqr == 2
        assert stats.extreme_lower == -4
        assert stats.extreme_upper == 10
        assert stats.mild_lower == -1
        assert stats.mild_upper == 7
        assert stats.mean == pytest.approx(12.7)
        assert stats.column == "count"

    def test_zeros_excluded_from_statistics(self):
        stats = compute_column_statistics(pd.Series([0, 0, 1, 2, 3, 4]))
        assert stats.q1 == 1.5
        assert stats.q3 == 3.5
        assert stats.mean == 2.5
        assert stats.zero_count == 2

    def test_length_counts_missing_values(self):
        stats = compute_column_statistics(pd.Series([1, 2, np.nan, np.nan]))
        assert stats.length == 4
        assert stats.zero_threshold == pytest.approx(0.2)

    def test_all_zero_column_has_no_statistics(self):
        assert compute_column_statistics(pd.Series([0, 0, 0, 0])) is None

    def test_single_nonzero_value_has_no_statistics(self):
        assert compute_column_statistics(pd.Series([0, 5, np.nan])) is None

    def test_sample_standard_deviation(self):
        stats = compute_column_statistics(pd.Series([2, 4, 4, 4, 5, 5, 7, 9]))
        assert stats.std == pytest.approx(2.138, abs=1e-3)

    @pytest.mark.parametrize("values", [
        SCENARIO,
        [5, 5, 5, 5],
        [0.1, 0.5, 12.0, 3.3, 7.7, 0, 0],
        [-10, -3, 4, 8, 120, 15, 16],
        [1, 1000],
    ])
    def test_fences_are_monotonic(self, values):
        stats = compute_column_statistics(pd.Series(values))
        assert stats.q1 <= stats.q3
        assert stats.iqr >= 0
        assert (
            stats.extreme_lower <= stats.mild_lower <= stats.q1
            <= stats.q3 <= stats.mild_upper <= stats.extreme_upper
        )


class TestFormatBound:
    def test_whole_number(self):
        assert format_bound(-4.0) == "-4"

    def test_rounds_to_three_places(self):
        assert format_bound(1 / 3) == "0.333"


# ============================================================================
# CLASSIFIER
# ============================================================================

class TestClassifyValue:
    @pytest.fixture
    def stats(self):
        return compute_column_statistics(pd.Series(SCENARIO))

    def test_scenario_extreme_high(self, stats):
        kind, direction, threshold = classify_value(100, stats, Sensitivity.EXTREME_ONLY)
        assert kind == AnomalyKind.EXTREME_HIGH
        assert direction == Direction.HIGH
        assert threshold == "Value > 10 (Q3 + 3*IQR)"

    @pytest.mark.parametrize("value", [1, 2, 3, 4, 5])
    def test_scenario_values_are_valid(self, stats, value):
        kind, _, _ = classify_value(value, stats, Sensitivity.EXTREME_ONLY)
        assert kind == AnomalyKind.VALID

    def test_mild_high_only_in_mild_mode(self, stats):
        assert classify_value(8, stats, Sensitivity.EXTREME_ONLY)[0] == AnomalyKind.VALID
        assert classify_value(8, stats, Sensitivity.MILD_AND_EXTREME)[0] == AnomalyKind.MILD_HIGH

    def test_mild_low(self, stats):
        kind, direction, threshold = classify_value(-2, stats, Sensitivity.MILD_AND_EXTREME)
        assert kind == AnomalyKind.MILD_LOW
        assert direction == Direction.LOW
        assert threshold == "Value < -1 (Q1 - 1.5*IQR)"

    def test_extreme_low(self, stats):
        kind, direction, _ = classify_value(-5, stats, Sensitivity.EXTREME_ONLY)
        assert kind == AnomalyKind.EXTREME_LOW
        assert direction == Direction.LOW

    def test_extreme_reports_mild_bound_in_mild_mode(self, stats):
        _, _, threshold = classify_value(100, stats, Sensitivity.MILD_AND_EXTREME)
        assert threshold == "Value > 10 (Q3 + 3*IQR); Mild upper bound = 7"

    def test_fence_values_themselves_are_valid(self, stats):
        assert classify_value(10, stats, Sensitivity.EXTREME_ONLY)[0] == AnomalyKind.VALID
        assert classify_value(7, stats, Sensitivity.MILD_AND_EXTREME)[0] == AnomalyKind.VALID

    def test_rare_zero_is_flagged(self):
        stats = ColumnStatistics("c", q1=2, q3=4, mean=3, std=1, zero_count=1, length=30, zero_threshold=1.5)
        kind, direction, threshold = classify_value(0, stats, Sensitivity.EXTREME_ONLY)
        assert kind == AnomalyKind.ZERO_RARE
        assert direction == Direction.NONE
        assert "few zeros" in threshold

    def test_common_zero_is_skipped(self):
        stats = ColumnStatistics("c", q1=2, q3=4, mean=3, std=1, zero_count=3, length=10, zero_threshold=0.5)
        assert classify_value(0, stats, Sensitivity.MILD_AND_EXTREME) is None


class TestScanColumn:
    def test_missing_values_are_not_classified(self):
        df = pd.DataFrame({"site": ["a"] * 4, "count": [1, np.nan, 3, 4]})
        stats = compute_column_statistics(df["count"])
        anomalies = scan_column(df, "count", stats, Sensitivity.EXTREME_ONLY)
        assert [a.row for a in anomalies] == [0, 2, 3]

    def test_anomaly_carries_site_and_statistics(self, scenario_frame):
        stats = compute_column_statistics(scenario_frame["count"])
        anomalies = scan_column(scenario_frame, "count", stats, Sensitivity.EXTREME_ONLY)
        flagged = [a for a in anomalies if not a.is_valid]
        assert len(flagged) == 1
        assert flagged[0].site == "SpCr10"
        assert flagged[0].stats is stats
        assert flagged[0].issue == "Extreme high outlier"


# ============================================================================
# OUTLIER RULES
# ============================================================================

class TestOutlierRules:
    def test_requires_site_field(self, keep_reviewer):
        with pytest.raises(SchemaError):
            OutlierRules(pd.DataFrame({"count": [1, 2]}), keep_reviewer, Sensitivity.EXTREME_ONLY)

    def test_scenario_logs_every_value(self, scenario_frame, keep_reviewer):
        runner = OutlierRules(scenario_frame, keep_reviewer, Sensitivity.EXTREME_ONLY)
        summary = runner.run_all()
        log = runner.log.to_frame()

        assert len(log) == 10
        assert list(log["issue"]).count("Valid") == 9
        assert (log.loc[log["issue"] == "Valid", "action_taken"] == "keep").all()
        assert (log.loc[log["issue"] == "Valid", "note"] == "").all()
        assert summary["values_flagged"] == 1
        keep_reviewer.decide.assert_called_once()
        anomaly = keep_reviewer.decide.call_args[0][0]
        assert anomaly.kind == AnomalyKind.EXTREME_HIGH
        assert anomaly.value == 100

    def test_kept_values_leave_record_set_unchanged(self, scenario_frame, keep_reviewer):
        runner = OutlierRules(scenario_frame, keep_reviewer, Sensitivity.EXTREME_ONLY)
        runner.run_all()
        pd.testing.assert_frame_equal(runner.df, scenario_frame)

    def test_rerun_with_all_keep_is_idempotent(self, scenario_frame, keep_reviewer):
        first = OutlierRules(scenario_frame, keep_reviewer, Sensitivity.MILD_AND_EXTREME)
        first.run_all()
        second = OutlierRules(first.df, keep_reviewer, Sensitivity.MILD_AND_EXTREME)
        second.run_all()
        pd.testing.assert_frame_equal(first.df, second.df)
        pd.testing.assert_frame_equal(first.log.to_frame(), second.log.to_frame())

    def test_remove_sets_missing(self, scenario_frame):
        reviewer = MagicMock()
        reviewer.decide.return_value = Decision.remove("tally error")
        runner = OutlierRules(scenario_frame, reviewer, Sensitivity.EXTREME_ONLY)
        runner.run_all()

        assert pd.isna(runner.df.at[9, "count"])
        entry = runner.log.entries[-1]
        assert entry.action_taken == "remove"
        assert entry.original_value == 100
        assert pd.isna(entry.value)
        assert entry.note == "tally error"
        assert runner.summary["removed"] == 1
        # Scenario frame itself is untouched
        assert scenario_frame.at[9, "count"] == 100

    def test_correct_replaces_value(self, scenario_frame):
        reviewer = MagicMock()
        reviewer.decide.return_value = Decision.correct(10.0, NO_NOTE)
        runner = OutlierRules(scenario_frame, reviewer, Sensitivity.EXTREME_ONLY)
        runner.run_all()

        assert runner.df.at[9, "count"] == 10.0
        assert runner.log.entries[-1].value == 10.0
        assert runner.log.entries[-1].action_taken == "correct"
        assert runner.log.entries[-1].direction == "high"

    def test_corrected_value_is_not_reexamined(self, scenario_frame):
        reviewer = MagicMock()
        # Still an outlier after correction; must not be asked about twice
        reviewer.decide.return_value = Decision.correct(500.0, NO_NOTE)
        runner = OutlierRules(scenario_frame, reviewer, Sensitivity.EXTREME_ONLY)
        runner.run_all()
        assert reviewer.decide.call_count == 1
        assert len(runner.log) == 10

    def test_missing_values_are_not_logged(self, keep_reviewer):
        df = pd.DataFrame({"site": ["a"] * 5, "depth": [1.0, np.nan, 2.0, 3.0, np.nan]})
        runner = OutlierRules(df, keep_reviewer, Sensitivity.EXTREME_ONLY)
        runner.run_all()
        assert [e.row for e in runner.log] == [0, 2, 3]

    def test_rare_zero_goes_to_reviewer(self, keep_reviewer):
        df = pd.DataFrame({"site": ["a"] * 30, "stems": [0] + list(range(1, 30))})
        runner = OutlierRules(df, keep_reviewer, Sensitivity.EXTREME_ONLY)
        runner.run_all()
        anomaly = keep_reviewer.decide.call_args[0][0]
        assert anomaly.kind == AnomalyKind.ZERO_RARE
        assert runner.log.entries[0].issue == "Zero value (rare)"

    def test_common_zeros_are_silent(self, keep_reviewer):
        df = pd.DataFrame({"site": ["a"] * 10, "stems": [0, 0, 0, 1, 2, 3, 4, 5, 6, 7]})
        runner = OutlierRules(df, keep_reviewer, Sensitivity.MILD_AND_EXTREME)
        runner.run_all()
        keep_reviewer.decide.assert_not_called()
        assert len(runner.log) == 7

    def test_all_zero_column_is_skipped(self, keep_reviewer):
        df = pd.DataFrame({"site": ["a"] * 4, "stems": [0, 0, 0, 0], "height": [1, 2, 3, 4]})
        runner = OutlierRules(df, keep_reviewer, Sensitivity.EXTREME_ONLY)
        summary = runner.run_all()
        assert summary["columns_skipped"] == 1
        assert summary["columns_checked"] == 1
        assert "stems" not in runner.statistics
        assert {e.column for e in runner.log} == {"height"}

    def test_only_numeric_columns_are_checked(self, keep_reviewer):
        df = pd.DataFrame({
            "site": ["a", "b", "c"],
            "species": ["alnus", "betula", "picea"],
            "height": [1.0, 2.0, 3.0],
        })
        runner = OutlierRules(df, keep_reviewer, "e")
        assert runner.numeric_columns() == ["height"]

    def test_sensitivity_accepts_reviewer_token(self, scenario_frame, keep_reviewer):
        assert OutlierRules(scenario_frame, keep_reviewer, "m").sensitivity == Sensitivity.MILD_AND_EXTREME

    def test_scripted_reviewer_flow(self, scenario_frame):
        reviewer = ScriptedReviewer(["x", "c", "lots", "5", ""])
        runner = OutlierRules(scenario_frame, reviewer, Sensitivity.EXTREME_ONLY)
        runner.run_all()

        assert runner.df.at[9, "count"] == 5.0
        assert runner.log.entries[-1].note == NO_NOTE
        assert "Invalid input. Enter k, c, or r." in reviewer.transcript
        assert "Invalid input. Enter a numeric value." in reviewer.transcript
        assert any(line.startswith("Stats - Mean:") for line in reviewer.transcript)
        assert reviewer.remaining == 0
