"""
Percent Cover Rules

Fixed-bound check for a single percentage-cover column (ground and plant cover
sheets). No statistics: anything above 100 is impossible, anything below 1 is
suspect unless it is the 0.1 trace-cover code.

Only flagged rows are logged. Text in the cover column is not a bound
violation; the reviewer replaces it with a number before the bounds are checked.
"""

import math
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import structlog

from qaqc.models.audit_log import AuditLog, ReviewLogEntry
from qaqc.services.anomalies import (
    Action,
    Anomaly,
    AnomalyKind,
    Decision,
    Direction,
    apply_decision,
    ensure_float_dtype,
    find_unparseable,
    is_missing,
    require_columns,
)

logger = structlog.get_logger(__name__)


SITE_FIELD = "site"

COVER_MAX = 100.0
COVER_MIN = 1.0
TRACE_COVER = 0.1

NOT_NUMERIC_ISSUE = "Not a number"

# Dataset keyword -> cover column checked for it
COVER_COLUMNS = {
    "ground": "ground_percent_cover",
    "plant": "plant_percent_cover",
}


def classify_cover(value: float) -> Optional[Tuple[Direction, str]]:
    """
    Return (direction, issue) for an out-of-bounds cover value, else None.

    First match wins, so negative values are reported by the generic low rule.
    """
    if value > COVER_MAX:
        return Direction.HIGH, "Value > 100"
    if value < COVER_MIN and not math.isclose(value, TRACE_COVER):
        return Direction.LOW, "Value < 1 (not 0.1)"
    if value < 0:
        return Direction.LOW, "Negative value"
    return None


def scan_cover(df: pd.DataFrame, column: str) -> List[Anomaly]:
    anomalies = []
    for idx, val in df[column].items():
        if is_missing(val):
            continue
        classified = classify_cover(float(val))
        if classified is None:
            continue
        direction, issue = classified
        anomalies.append(Anomaly(
            kind=AnomalyKind.OUT_OF_COVER_BOUNDS,
            row=idx,
            column=column,
            value=val,
            site=df.at[idx, SITE_FIELD],
            issue=issue,
            direction=direction,
            threshold=f"Cover must be between {TRACE_COVER:g} (trace) and {COVER_MAX:g}",
        ))
    return anomalies


class CoverRules:
    """Interactive percent-cover bound check for one column."""

    def __init__(self, df: pd.DataFrame, reviewer, column: str, filename: str = ""):
        require_columns(df, [SITE_FIELD, column])
        self.df = df.copy()
        self.reviewer = reviewer
        self.column = column
        self.filename = filename
        self.log: AuditLog[ReviewLogEntry] = AuditLog(ReviewLogEntry)
        self.summary = {
            "values_unparseable": 0,
            "values_flagged": 0,
            "kept": 0,
            "corrected": 0,
            "removed": 0,
        }

    def _record(self, anomaly: Anomaly, decision: Decision, new_value: Any) -> None:
        self.log.append(ReviewLogEntry(
            row=anomaly.row,
            site=anomaly.site,
            column=self.column,
            original_value=anomaly.value,
            value=new_value,
            issue=anomaly.issue,
            direction=anomaly.direction.value,
            action_taken=decision.action.value,
            note=decision.note,
        ))

    def resolve_unparseable(self) -> None:
        """Have the reviewer replace every non-numeric cover entry."""
        cells = find_unparseable(self.df, [self.column])
        if not cells:
            return
        ensure_float_dtype(self.df, [self.column])
        for idx, _, text in cells:
            anomaly = Anomaly(
                kind=AnomalyKind.NOT_NUMERIC,
                row=idx,
                column=self.column,
                value=text,
                site=self.df.at[idx, SITE_FIELD],
                issue=NOT_NUMERIC_ISSUE,
            )
            decision = self.reviewer.enter_number(anomaly, self.column)
            new_value = apply_decision(self.df, idx, self.column, decision)
            self.summary["values_unparseable"] += 1
            self._record(anomaly, decision, new_value)

    def run_all(self) -> Dict[str, Any]:
        logger.info("Searching for out-of-bounds cover values", filename=self.filename, column=self.column)
        self.resolve_unparseable()

        anomalies = scan_cover(self.df, self.column)
        if anomalies:
            ensure_float_dtype(self.df, [self.column])

        for anomaly in anomalies:
            decision = self.reviewer.decide(anomaly)
            new_value = apply_decision(self.df, anomaly.row, self.column, decision)
            self.summary["values_flagged"] += 1
            self.summary[{
                Action.KEEP: "kept",
                Action.CORRECT: "corrected",
                Action.REMOVE: "removed",
            }[decision.action]] += 1
            self._record(anomaly, decision, new_value)

        return dict(self.summary, log_entries=len(self.log))
