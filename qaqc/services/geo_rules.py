"""
Site Geospatial Rules

Row-by-row plausibility checks for the site-level datasheet. Every row goes
through the same ordered checks and produces exactly one log entry with a
status string per check, whether or not anything was wrong:

1. Latitude at 0 m / 30 m: stored as |latitude| (the survey area is in the
   northern hemisphere). Missing or zero -> reviewer supplies a value or
   defers. A three-digit latitude means latitude and longitude were entered in
   each other's fields, so the pair is swapped back.
2. Longitude at 0 m / 30 m: missing or zero -> supply or defer.
3. Western hemisphere: positive longitudes are negated.
4. Elevation, slope, aspect, transect orientation: sign and integer-digit
   magnitude checks; the reviewer confirms or replaces suspect values.
5. Moisture class: must be one of MOISTURE_CLASSES; close misspellings are
   corrected automatically when exactly one class is within the edit bound.

Text found in any numeric field is replaced by the reviewer before the row is
checked, so it is never mistaken for a missing value.

The digit-count thresholds are calibration for this survey, not general rules.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
import structlog
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from qaqc.config import settings
from qaqc.models.audit_log import AuditLog, GeoLogEntry
from qaqc.services.anomalies import (
    Action,
    Anomaly,
    AnomalyKind,
    Direction,
    apply_decision,
    ensure_float_dtype,
    ensure_object_dtype,
    find_unparseable,
    format_value,
    integer_digit_count,
    is_missing,
    require_columns,
)

logger = structlog.get_logger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

SITE_FIELD = "site"
MOISTURE_FIELD = "moisture_class"

POSITIONS = ("0m", "30m")

MOISTURE_CLASSES = (
    "subhygric",
    "mesic-subhygric",
    "mesic",
    "mesic-subxeric",
    "subxeric",
    "xeric",
)

SWAPPED_LATITUDE_DIGITS = 3

VALID = "Data is valid"
GOOD = "Data was good"


def latitude_field(position: str) -> str:
    return f"latitude_at_{position}"


def longitude_field(position: str) -> str:
    return f"longitude_at_{position}"


@dataclass(frozen=True)
class MeasurementRule:
    """Plausibility rule for one numeric site measurement."""
    field: str
    label: str
    max_digits: int
    flag_zero: bool = False
    flag_negative: bool = True
    # Missing values are left for the previous-year value instead of prompting
    defer_missing: bool = True


MEASUREMENT_RULES = (
    MeasurementRule("elevation", "Elevation", max_digits=4, flag_zero=True, defer_missing=False),
    MeasurementRule("slope", "Slope", max_digits=2),
    MeasurementRule("aspect", "Aspect", max_digits=3, flag_negative=False),
    MeasurementRule("transect_orientation", "Transect orientation", max_digits=3),
)

# Log entry attributes (status, note) filled by each measurement rule
MEASUREMENT_LOG_FIELDS = {
    "elevation": ("elevation", "elevation_note"),
    "slope": ("slope", "slope_note"),
    "aspect": ("aspect", "aspect_note"),
    "transect_orientation": ("transect_orientation", "transect_note"),
}

NUMERIC_FIELDS = (
    [latitude_field(p) for p in POSITIONS]
    + [longitude_field(p) for p in POSITIONS]
    + [rule.field for rule in MEASUREMENT_RULES]
)

REQUIRED_FIELDS = [SITE_FIELD, MOISTURE_FIELD] + NUMERIC_FIELDS

FIELD_LABELS = {
    **{latitude_field(p): f"Latitude at {p}" for p in POSITIONS},
    **{longitude_field(p): f"Longitude at {p}" for p in POSITIONS},
    **{rule.field: rule.label for rule in MEASUREMENT_RULES},
}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def is_missing_or_zero(value: Any) -> bool:
    return is_missing(value) or value == 0


def looks_swapped(latitude: float) -> bool:
    """A latitude with three integer digits is really a longitude."""
    return integer_digit_count(latitude) == SWAPPED_LATITUDE_DIGITS


def measurement_issue(value: Any, rule: MeasurementRule) -> Optional[str]:
    """Return why a measurement looks wrong ('missing', 'zero', 'negative', 'magnitude') or None."""
    if is_missing(value):
        return "missing"
    if rule.flag_zero and value == 0:
        return "zero"
    if rule.flag_negative and value < 0:
        return "negative"
    if integer_digit_count(value) > rule.max_digits:
        return "magnitude"
    return None


def match_moisture_class(
    value: str,
    domain: Sequence[str] = MOISTURE_CLASSES,
    tolerance: float = 0.2,
) -> Optional[str]:
    """
    Fuzzy-match a moisture class against the domain.

    Candidates must lie within ceil(tolerance * len(value)) edits. The match is
    accepted only when exactly one domain member is within that bound; two or
    more candidates, even at different distances, return None so the reviewer
    decides.

    >>> match_moisture_class("xerix")
    'xeric'
    >>> match_moisture_class("mesic-subxric") is None
    True
    """
    query = str(value).strip().lower()
    if not query:
        return None
    max_distance = math.ceil(tolerance * len(query))
    candidates = process.extract(
        query,
        domain,
        scorer=Levenshtein.distance,
        score_cutoff=max_distance,
        limit=None,
    )
    if len(candidates) != 1:
        return None
    return candidates[0][0]


# ============================================================================
# MAIN RULES CLASS
# ============================================================================

class GeoRules:
    """Interactive geospatial and site-measurement checks for the site datasheet."""

    def __init__(
        self,
        df: pd.DataFrame,
        reviewer,
        filename: str = "",
        moisture_tolerance: Optional[float] = None,
    ):
        require_columns(df, REQUIRED_FIELDS)
        self.df = df.copy()
        # Text in numeric fields, keyed by row; captured before the float cast blanks it
        self.unparseable: Dict[Any, List[Tuple[str, Any]]] = {}
        for idx, col, text in find_unparseable(self.df, NUMERIC_FIELDS):
            self.unparseable.setdefault(idx, []).append((col, text))
        ensure_float_dtype(self.df, NUMERIC_FIELDS)
        ensure_object_dtype(self.df, MOISTURE_FIELD)
        self.reviewer = reviewer
        self.filename = filename
        self.moisture_tolerance = (
            settings.MOISTURE_MATCH_TOLERANCE if moisture_tolerance is None else moisture_tolerance
        )
        self.log: AuditLog[GeoLogEntry] = AuditLog(GeoLogEntry)
        self.summary = {
            "rows_checked": 0,
            "values_unparseable": 0,
            "coordinates_swapped": 0,
            "longitudes_made_western": 0,
            "values_supplied": 0,
            "values_deferred": 0,
            "measurements_flagged": 0,
            "moisture_auto_corrected": 0,
            "moisture_entered": 0,
        }

    def _anomaly(self, idx, kind: AnomalyKind, column: str, issue: str) -> Anomaly:
        return Anomaly(
            kind=kind,
            row=idx,
            column=column,
            value=self.df.at[idx, column],
            site=self.df.at[idx, SITE_FIELD],
            issue=issue,
            direction=Direction.NONE,
        )

    # ─────────────────────────────────────────────────────────────────
    # Coordinates
    # ─────────────────────────────────────────────────────────────────

    def _supply_missing(self, idx, column: str, label: str) -> Optional[float]:
        """Ask the reviewer for a missing/zero coordinate; None when deferred."""
        anomaly = self._anomaly(idx, AnomalyKind.GEO_MISSING_OR_ZERO, column, f"{label} missing or zero")
        decision = self.reviewer.supply_missing(anomaly, label)
        if decision.action != Action.CORRECT:
            self.summary["values_deferred"] += 1
            return None
        self.summary["values_supplied"] += 1
        return decision.value

    def check_latitude(self, idx, position: str) -> str:
        lat_col, lon_col = latitude_field(position), longitude_field(position)
        lat = self.df.at[idx, lat_col]
        if not is_missing(lat):
            lat = abs(lat)
            self.df.at[idx, lat_col] = lat

        label = f"Latitude at {position}"
        if is_missing_or_zero(lat):
            supplied = self._supply_missing(idx, lat_col, label)
            if supplied is None:
                return f"{label} missing or zero, change manually"
            self.df.at[idx, lat_col] = abs(supplied)
            return f"{label} changed from {format_value(lat)} to {format_value(abs(supplied))}"

        if looks_swapped(lat):
            lon = self.df.at[idx, lon_col]
            self.df.at[idx, lat_col] = lon if is_missing(lon) else abs(lon)
            self.df.at[idx, lon_col] = lat
            self.summary["coordinates_swapped"] += 1
            logger.debug(
                "Latitude/longitude swapped",
                anomaly=AnomalyKind.GEO_SWAPPED.value,
                row=idx,
                position=position,
                filename=self.filename,
            )
            return f"Lat/Long at {position} swapped"

        return GOOD

    def check_longitude(self, idx, position: str) -> str:
        lon_col = longitude_field(position)
        lon = self.df.at[idx, lon_col]
        label = f"Longitude at {position}"
        if not is_missing_or_zero(lon):
            return GOOD
        supplied = self._supply_missing(idx, lon_col, label)
        if supplied is None:
            return f"{label} missing or zero, change manually"
        self.df.at[idx, lon_col] = supplied
        return f"{label} changed from {format_value(lon)} to {format_value(supplied)}"

    def check_western_hemisphere(self, idx, position: str) -> str:
        lon_col = longitude_field(position)
        lon = self.df.at[idx, lon_col]
        if is_missing(lon):
            return f"Longitude at {position} is missing"
        if lon > 0:
            self.df.at[idx, lon_col] = -lon
            self.summary["longitudes_made_western"] += 1
            return f"Longitude at {position} switched to western"
        if lon == 0:
            return f"Longitude at {position} is equal to 0"
        return GOOD

    # ─────────────────────────────────────────────────────────────────
    # Site measurements
    # ─────────────────────────────────────────────────────────────────

    def check_measurement(self, idx, rule: MeasurementRule) -> Tuple[str, str]:
        """Return (status, note) for one measurement rule."""
        value = self.df.at[idx, rule.field]
        issue = measurement_issue(value, rule)
        if issue is None:
            return VALID, ""

        if issue == "missing" and rule.defer_missing:
            self.summary["values_deferred"] += 1
            return f"{rule.label} missing, use the previous year value", ""

        self.summary["measurements_flagged"] += 1
        kind = (
            AnomalyKind.GEO_MISSING_OR_ZERO if issue in ("missing", "zero")
            else AnomalyKind.GEO_MAGNITUDE_SUSPECT
        )
        anomaly = self._anomaly(idx, kind, rule.field, f"{rule.label} {issue}")
        decision = self.reviewer.confirm_or_replace(anomaly, rule.label)

        if decision.action == Action.CORRECT:
            new_value = apply_decision(self.df, idx, rule.field, decision)
            return (
                f"{rule.label} updated from {format_value(value)} to {format_value(new_value)}",
                decision.note,
            )
        if decision.confirmed:
            return f"{rule.label} confirmed: {format_value(value)}", decision.note
        return f"{rule.label} left unchanged: {format_value(value)}", decision.note

    def check_moisture_class(self, idx) -> str:
        value = self.df.at[idx, MOISTURE_FIELD]
        if not is_missing(value) and value in MOISTURE_CLASSES:
            return VALID

        match = None if is_missing(value) else match_moisture_class(
            value, MOISTURE_CLASSES, self.moisture_tolerance
        )
        if match is not None:
            self.df.at[idx, MOISTURE_FIELD] = match
            self.summary["moisture_auto_corrected"] += 1
            return f"Moisture class auto-corrected to: {match}"

        anomaly = self._anomaly(
            idx, AnomalyKind.CATEGORICAL_INVALID, MOISTURE_FIELD, "Moisture class not recognised"
        )
        decision = self.reviewer.choose_category(anomaly, MOISTURE_CLASSES)
        new_value = apply_decision(self.df, idx, MOISTURE_FIELD, decision)
        self.summary["moisture_entered"] += 1
        return f"Moisture class updated to: {new_value}"

    # ─────────────────────────────────────────────────────────────────
    # Orchestration
    # ─────────────────────────────────────────────────────────────────

    def resolve_unparseable(self, idx) -> str:
        """Have the reviewer replace text found in this row's numeric fields."""
        fixes = []
        for col, text in self.unparseable.get(idx, []):
            label = FIELD_LABELS[col]
            anomaly = Anomaly(
                kind=AnomalyKind.NOT_NUMERIC,
                row=idx,
                column=col,
                value=text,
                site=self.df.at[idx, SITE_FIELD],
                issue=f"{label} is not a number",
            )
            decision = self.reviewer.enter_number(anomaly, label)
            new_value = apply_decision(self.df, idx, col, decision)
            self.summary["values_unparseable"] += 1
            fixes.append(f"{label} '{text}' replaced with {format_value(new_value)}")
        return "; ".join(fixes)

    def check_row(self, idx) -> GeoLogEntry:
        """Run every check on one row, in order, and build its log entry."""
        entry = GeoLogEntry(site=self.df.at[idx, SITE_FIELD], row=idx)

        # Replaced numbers then go through the same checks as typed ones
        entry.unparseable = self.resolve_unparseable(idx)

        # Latitude first: a swap moves a value into the longitude field
        # that the longitude checks below then see.
        entry.lat_0m = self.check_latitude(idx, "0m")
        entry.lat_30m = self.check_latitude(idx, "30m")
        entry.long_0m = self.check_longitude(idx, "0m")
        entry.long_30m = self.check_longitude(idx, "30m")
        entry.long_west_0m = self.check_western_hemisphere(idx, "0m")
        entry.long_west_30m = self.check_western_hemisphere(idx, "30m")

        for rule in MEASUREMENT_RULES:
            status_attr, note_attr = MEASUREMENT_LOG_FIELDS[rule.field]
            status, note = self.check_measurement(idx, rule)
            setattr(entry, status_attr, status)
            setattr(entry, note_attr, note)

        entry.moisture_class = self.check_moisture_class(idx)
        return entry

    def run_all(self) -> Dict[str, Any]:
        logger.info("Checking site coordinates and measurements", filename=self.filename, rows=len(self.df))
        for idx in self.df.index:
            self.log.append(self.check_row(idx))
            self.summary["rows_checked"] += 1
        return dict(self.summary, log_entries=len(self.log))
