"""
Statistical Outlier Rules

Tukey-fence outlier detection over every numeric column of a field datasheet
(browns, cwd, resprout, seedling, shrub, soils, combustion, disk).

- Statistics (Q1, Q3, IQR, mean, SD) use non-zero, non-missing values only,
  so plots with nothing recorded do not drag the quartiles down.
- A zero is flagged only when zeros are rare in the column.
- Mild fences sit at 1.5 x IQR, extreme fences at 3 x IQR.

Every examined value ends up in the pass log: flagged values with the
reviewer's decision, unflagged ones as "Valid" / "keep".
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import structlog

from qaqc.config import settings
from qaqc.models.audit_log import AuditLog, ReviewLogEntry
from qaqc.services.anomalies import (
    Action,
    Anomaly,
    AnomalyKind,
    Direction,
    Sensitivity,
    apply_decision,
    ensure_float_dtype,
    is_missing,
    require_columns,
)

logger = structlog.get_logger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

SITE_FIELD = "site"

MILD_FENCE = 1.5
EXTREME_FENCE = 3.0
MIN_NONZERO_VALUES = 2

TUKEY_HINGES = "tukey"

ISSUE_LABELS = {
    AnomalyKind.VALID: "Valid",
    AnomalyKind.ZERO_RARE: "Zero value (rare)",
    AnomalyKind.EXTREME_LOW: "Extreme low outlier",
    AnomalyKind.MILD_LOW: "Mild low outlier",
    AnomalyKind.EXTREME_HIGH: "Extreme high outlier",
    AnomalyKind.MILD_HIGH: "Mild high outlier",
}


# ============================================================================
# COLUMN STATISTICS
# ============================================================================

@dataclass
class ColumnStatistics:
    """Per-column statistics over non-zero, non-missing values."""
    column: str
    q1: float
    q3: float
    mean: float
    std: float
    zero_count: int
    length: int
    zero_threshold: float

    @property
    def iqr(self) -> float:
        return self.q3 - self.q1

    @property
    def mild_lower(self) -> float:
        return self.q1 - MILD_FENCE * self.iqr

    @property
    def mild_upper(self) -> float:
        return self.q3 + MILD_FENCE * self.iqr

    @property
    def extreme_lower(self) -> float:
        return self.q1 - EXTREME_FENCE * self.iqr

    @property
    def extreme_upper(self) -> float:
        return self.q3 + EXTREME_FENCE * self.iqr

    @property
    def zeros_are_rare(self) -> bool:
        return self.zero_count < self.zero_threshold


def format_bound(value: float) -> str:
    """Round to 3 places without trailing zeros (9.25, -4, 0.333)."""
    return np.format_float_positional(round(float(value), 3), trim="-")


def tukey_hinges(values: np.ndarray) -> Tuple[float, float]:
    """Medians of the lower and upper halves; an odd middle value joins both halves."""
    ordered = np.sort(np.asarray(values, dtype=float))
    half = (len(ordered) + 1) // 2
    lower = ordered[:half]
    upper = ordered[len(ordered) - half:]
    return float(np.median(lower)), float(np.median(upper))


def compute_quartiles(values: np.ndarray, method: str = TUKEY_HINGES) -> Tuple[float, float]:
    """Q1 and Q3 by Tukey's hinges, or by any numpy percentile method name."""
    if method == TUKEY_HINGES:
        return tukey_hinges(values)
    q1, q3 = np.percentile(np.asarray(values, dtype=float), [25, 75], method=method)
    return float(q1), float(q3)


def compute_column_statistics(
    series: pd.Series,
    method: str = TUKEY_HINGES,
    zero_fraction: float = 0.05,
) -> Optional[ColumnStatistics]:
    """Statistics for one column; None when fewer than 2 non-zero values exist."""
    numeric = pd.to_numeric(series, errors="coerce")
    present = numeric.dropna()
    nonzero = present[present != 0].to_numpy(dtype=float)
    if len(nonzero) < MIN_NONZERO_VALUES:
        return None

    q1, q3 = compute_quartiles(nonzero, method)
    return ColumnStatistics(
        column=str(series.name),
        q1=q1,
        q3=q3,
        mean=float(np.mean(nonzero)),
        std=float(np.std(nonzero, ddof=1)),
        zero_count=int((present == 0).sum()),
        length=len(series),
        zero_threshold=zero_fraction * len(series),
    )


# ============================================================================
# CLASSIFIER
# ============================================================================

def classify_value(
    value: float,
    stats: ColumnStatistics,
    sensitivity: Sensitivity,
) -> Optional[Tuple[AnomalyKind, Direction, str]]:
    """
    Classify one non-missing value against the column fences.

    Returns (kind, direction, threshold explanation), or None for a zero that
    is common in its column (skipped silently). First matching rule wins.
    """
    mild = sensitivity == Sensitivity.MILD_AND_EXTREME

    if value == 0:
        if stats.zeros_are_rare:
            return AnomalyKind.ZERO_RARE, Direction.NONE, "Value is zero; few zeros in dataset"
        return None

    if value < stats.extreme_lower:
        threshold = f"Value < {format_bound(stats.extreme_lower)} (Q1 - 3*IQR)"
        if mild:
            threshold += f"; Mild lower bound = {format_bound(stats.mild_lower)}"
        return AnomalyKind.EXTREME_LOW, Direction.LOW, threshold

    if mild and value < stats.mild_lower:
        return (
            AnomalyKind.MILD_LOW,
            Direction.LOW,
            f"Value < {format_bound(stats.mild_lower)} (Q1 - 1.5*IQR)",
        )

    if value > stats.extreme_upper:
        threshold = f"Value > {format_bound(stats.extreme_upper)} (Q3 + 3*IQR)"
        if mild:
            threshold += f"; Mild upper bound = {format_bound(stats.mild_upper)}"
        return AnomalyKind.EXTREME_HIGH, Direction.HIGH, threshold

    if mild and value > stats.mild_upper:
        return (
            AnomalyKind.MILD_HIGH,
            Direction.HIGH,
            f"Value > {format_bound(stats.mild_upper)} (Q3 + 1.5*IQR)",
        )

    return AnomalyKind.VALID, Direction.NONE, ""


def scan_column(
    df: pd.DataFrame,
    column: str,
    stats: ColumnStatistics,
    sensitivity: Sensitivity,
) -> List[Anomaly]:
    """Classify every non-missing value of a column, in row order."""
    anomalies = []
    sites = df[SITE_FIELD] if SITE_FIELD in df.columns else None
    for idx, val in df[column].items():
        if is_missing(val):
            continue
        classified = classify_value(float(val), stats, sensitivity)
        if classified is None:
            continue
        kind, direction, threshold = classified
        anomalies.append(Anomaly(
            kind=kind,
            row=idx,
            column=column,
            value=val,
            site=sites.at[idx] if sites is not None else None,
            issue=ISSUE_LABELS[kind],
            direction=direction,
            threshold=threshold,
            stats=stats,
        ))
    return anomalies


# ============================================================================
# MAIN RULES CLASS
# ============================================================================

class OutlierRules:
    """
    Interactive statistical outlier pass over all numeric columns.

    The reviewer object supplies a Decision for every flagged value; see
    qaqc.services.reviewer.
    """

    def __init__(
        self,
        df: pd.DataFrame,
        reviewer,
        sensitivity: Union[Sensitivity, str],
        filename: str = "",
        quartile_method: Optional[str] = None,
        zero_fraction: Optional[float] = None,
    ):
        require_columns(df, [SITE_FIELD])
        self.df = df.copy()
        self.reviewer = reviewer
        self.sensitivity = (
            sensitivity if isinstance(sensitivity, Sensitivity) else Sensitivity.parse(sensitivity)
        )
        self.filename = filename
        self.quartile_method = quartile_method or settings.QUARTILE_METHOD
        self.zero_fraction = (
            settings.ZERO_RARITY_FRACTION if zero_fraction is None else zero_fraction
        )
        self.log: AuditLog[ReviewLogEntry] = AuditLog(ReviewLogEntry)
        self.statistics: Dict[str, ColumnStatistics] = {}
        self.summary = {
            "columns_checked": 0,
            "columns_skipped": 0,
            "values_examined": 0,
            "values_flagged": 0,
            "kept": 0,
            "corrected": 0,
            "removed": 0,
        }

    def numeric_columns(self) -> List[str]:
        return list(self.df.select_dtypes(include=[np.number]).columns)

    def run_for_column(self, col: str) -> List[Anomaly]:
        """Classify one column, resolve its flagged values, and log every examined value."""
        stats = compute_column_statistics(self.df[col], self.quartile_method, self.zero_fraction)
        if stats is None:
            logger.debug("Column skipped, fewer than 2 non-zero values", column=col, filename=self.filename)
            self.summary["columns_skipped"] += 1
            return []

        self.statistics[col] = stats
        self.summary["columns_checked"] += 1

        # The whole column is classified before any decision is applied, so a
        # corrected value is never re-examined in this pass.
        anomalies = scan_column(self.df, col, stats, self.sensitivity)
        float_cast = False

        for anomaly in anomalies:
            self.summary["values_examined"] += 1
            if anomaly.is_valid:
                self.log.append(ReviewLogEntry(
                    row=anomaly.row,
                    site=anomaly.site,
                    column=col,
                    original_value=anomaly.value,
                    value=anomaly.value,
                    issue=anomaly.issue,
                ))
                continue

            self.summary["values_flagged"] += 1
            decision = self.reviewer.decide(anomaly)
            if decision.action != Action.KEEP and not float_cast:
                ensure_float_dtype(self.df, [col])
                float_cast = True
            new_value = apply_decision(self.df, anomaly.row, col, decision)
            self._count(decision.action)

            self.log.append(ReviewLogEntry(
                row=anomaly.row,
                site=anomaly.site,
                column=col,
                original_value=anomaly.value,
                value=new_value,
                issue=anomaly.issue,
                direction=anomaly.direction.value,
                action_taken=decision.action.value,
                note=decision.note,
            ))

        return anomalies

    def _count(self, action: Action) -> None:
        key = {Action.KEEP: "kept", Action.CORRECT: "corrected", Action.REMOVE: "removed"}[action]
        self.summary[key] += 1

    def run_all(self) -> Dict[str, Any]:
        """Run the pass over every numeric column. Returns summary dict."""
        logger.info(
            "Searching for outliers",
            filename=self.filename,
            sensitivity=self.sensitivity.value,
            quartile_method=self.quartile_method,
        )
        for col in self.numeric_columns():
            self.run_for_column(col)
        return dict(self.summary, log_entries=len(self.log))
