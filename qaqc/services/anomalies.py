"""
Shared anomaly, decision and record-mutation primitives.

Every check pass (site code, outlier, cover, geo) classifies observations into
an Anomaly, asks the reviewer for a Decision, applies it with apply_decision()
and appends one entry to its AuditLog.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd


NO_NOTE = "No note"


class SchemaError(KeyError):
    """A field the check relies on is absent from the loaded record set."""


class AnomalyKind(str, Enum):
    VALID = "Valid"
    ZERO_RARE = "ZeroRare"
    MILD_LOW = "MildLow"
    MILD_HIGH = "MildHigh"
    EXTREME_LOW = "ExtremeLow"
    EXTREME_HIGH = "ExtremeHigh"
    OUT_OF_COVER_BOUNDS = "OutOfCoverBounds"
    GEO_MISSING_OR_ZERO = "GeoMissingOrZero"
    GEO_MAGNITUDE_SUSPECT = "GeoMagnitudeSuspect"
    GEO_SWAPPED = "GeoSwapped"
    CATEGORICAL_INVALID = "CategoricalInvalid"
    NOT_NUMERIC = "NotNumeric"


class Direction(str, Enum):
    NONE = ""
    LOW = "low"
    HIGH = "high"


class Action(str, Enum):
    KEEP = "keep"
    CORRECT = "correct"
    REMOVE = "remove"


class Sensitivity(str, Enum):
    EXTREME_ONLY = "extreme-only"
    MILD_AND_EXTREME = "mild-and-extreme"

    @classmethod
    def parse(cls, value: str) -> "Sensitivity":
        """Accept the enum value or the single-letter reviewer token (e/m)."""
        token = value.strip().lower()
        if token in ("e", "extreme", cls.EXTREME_ONLY.value):
            return cls.EXTREME_ONLY
        if token in ("m", "mild", cls.MILD_AND_EXTREME.value):
            return cls.MILD_AND_EXTREME
        raise ValueError(f"Unknown outlier sensitivity: {value!r}")


@dataclass
class Anomaly:
    """A classified (row, column) or (row, field group) observation."""
    kind: AnomalyKind
    row: int
    column: str
    value: Any
    site: Any = None
    issue: str = ""
    direction: Direction = Direction.NONE
    threshold: str = ""
    # ColumnStatistics for the statistical detector, None elsewhere
    stats: Any = None

    @property
    def is_valid(self) -> bool:
        return self.kind == AnomalyKind.VALID


@dataclass
class Decision:
    action: Action
    value: Optional[Any] = None
    note: str = ""
    # Keep after the reviewer explicitly vouched for the value
    confirmed: bool = False

    @classmethod
    def keep(cls, note: str = "", confirmed: bool = False) -> "Decision":
        return cls(Action.KEEP, note=note, confirmed=confirmed)

    @classmethod
    def correct(cls, value: Any, note: str = "") -> "Decision":
        return cls(Action.CORRECT, value=value, note=note)

    @classmethod
    def remove(cls, note: str = "") -> "Decision":
        return cls(Action.REMOVE, note=note)


# ============================================================================
# VALUE HELPERS
# ============================================================================

def is_missing(value: Any) -> bool:
    """True for None, NaN and pandas NA."""
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def parse_number(text: Any) -> Optional[float]:
    """Parse reviewer input as a finite float; None when it is not numeric."""
    if text is None:
        return None
    try:
        number = float(str(text).strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def integer_digit_count(value: float) -> int:
    """Number of digits in the integer part of |value|; 0 for |value| < 1."""
    magnitude = abs(float(value))
    if magnitude < 1:
        return 0
    return int(math.floor(math.log10(magnitude))) + 1


def require_columns(df: pd.DataFrame, columns: Iterable[str]) -> None:
    """Raise SchemaError naming every required column missing from df."""
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise SchemaError(f"Record set is missing required field(s): {', '.join(missing)}")


def find_unparseable(df: pd.DataFrame, columns: Iterable[str]) -> List[Tuple[Any, str, Any]]:
    """
    (row, column, original value) for every present cell of the given numeric
    columns that does not parse as a number.

    Call before ensure_float_dtype(), which would turn these cells into NaN.
    """
    cells = []
    for col in columns:
        if col not in df.columns:
            continue
        coerced = pd.to_numeric(df[col], errors="coerce")
        bad = coerced.isna() & df[col].notna()
        cells.extend((idx, col, df.at[idx, col]) for idx in df.index[bad])
    return cells


def ensure_float_dtype(df: pd.DataFrame, columns: Iterable[str]) -> None:
    """Cast numeric columns to float so NaN and decimal corrections can be stored."""
    for col in columns:
        if col in df.columns and df[col].dtype != np.float64:
            df[col] = pd.to_numeric(df[col], errors="coerce").astype(np.float64)


def ensure_object_dtype(df: pd.DataFrame, col: str) -> None:
    """Cast col to object so a text replacement fits, even in a column read as integers."""
    if col in df.columns and df[col].dtype != object:
        df[col] = df[col].astype(object)


# ============================================================================
# RECORD MUTATOR
# ============================================================================

def apply_decision(df: pd.DataFrame, row: int, column: str, decision: Decision) -> Any:
    """
    Apply a reviewer decision to one cell and return the resulting value.

    Remove stores a missing value, Correct stores the replacement, Keep leaves
    the cell untouched. All other fields of the record are preserved.
    """
    if decision.action == Action.REMOVE:
        df.at[row, column] = np.nan
    elif decision.action == Action.CORRECT:
        df.at[row, column] = decision.value
    return df.at[row, column]


def format_value(value: Any) -> str:
    """Render a cell for a human-readable status line ("missing" for NaN)."""
    if is_missing(value):
        return "missing"
    if isinstance(value, (float, np.floating)):
        return np.format_float_positional(float(value), trim="-")
    return str(value)
