"""
Site Code Rules

Every field datasheet carries a short site code (e.g. "SpCr04") that must agree
with the fire-scar name it belongs to ("Spruce Creek"). The letter prefix is
re-derived from the fire scar and the plot number is kept from the existing
code. Only rows whose code actually changes are logged.
"""

import re
from typing import Any, Dict, Optional

import pandas as pd
import structlog

from qaqc.models.audit_log import AuditLog, SiteCodeLogEntry
from qaqc.services.anomalies import ensure_object_dtype, is_missing, require_columns

logger = structlog.get_logger(__name__)


SITE_FIELD = "site"
FIRE_SCAR_FIELD = "fire_scar"

# Fire-scar names recorded in short form in the field
FIRE_SCAR_ALIASES = {
    "Aggie": "Aggie Creek",
}


def site_prefix(fire_scar: str) -> str:
    """
    First two letters of each of the first two words, or the first four
    characters of a single-word name.

    >>> site_prefix("Spruce Creek")
    'SpCr'
    >>> site_prefix("Boundary")
    'Boun'
    """
    words = str(fire_scar).split()
    if len(words) >= 2:
        return words[0][:2] + words[1][:2]
    return str(fire_scar).strip()[:4]


def site_number(site_code: Any) -> str:
    """Digits of an existing site code ("SC04" -> "04")."""
    if is_missing(site_code):
        return ""
    return re.sub(r"\D", "", str(site_code))


def derive_site_code(fire_scar: str, site_code: Any) -> str:
    return site_prefix(fire_scar) + site_number(site_code)


class SiteCodeRules:
    """Site code normalisation pass (no reviewer input needed)."""

    def __init__(self, df: pd.DataFrame, filename: str = ""):
        require_columns(df, [SITE_FIELD, FIRE_SCAR_FIELD])
        self.df = df.copy()
        self.filename = filename
        self.log: AuditLog[SiteCodeLogEntry] = AuditLog(SiteCodeLogEntry)
        self.summary = {"aliases_applied": 0, "codes_corrected": 0, "rows_skipped": 0}

    def apply_aliases(self) -> int:
        applied = 0
        for short, full in FIRE_SCAR_ALIASES.items():
            mask = self.df[FIRE_SCAR_FIELD] == short
            count = int(mask.sum())
            if count:
                self.df.loc[mask, FIRE_SCAR_FIELD] = full
                applied += count
        self.summary["aliases_applied"] = applied
        return applied

    def check_row(self, idx) -> Optional[SiteCodeLogEntry]:
        fire_scar = self.df.at[idx, FIRE_SCAR_FIELD]
        if is_missing(fire_scar) or not str(fire_scar).strip():
            self.summary["rows_skipped"] += 1
            return None

        original = self.df.at[idx, SITE_FIELD]
        corrected = derive_site_code(fire_scar, original)
        if not is_missing(original) and corrected == str(original):
            return None

        self.df.at[idx, SITE_FIELD] = corrected
        self.summary["codes_corrected"] += 1
        return SiteCodeLogEntry(row=idx, original_site=original, corrected_site=corrected)

    def run_all(self) -> Dict[str, Any]:
        logger.info("Correcting site name abbreviations", filename=self.filename)
        ensure_object_dtype(self.df, SITE_FIELD)
        self.apply_aliases()
        for idx in self.df.index:
            entry = self.check_row(idx)
            if entry is not None:
                self.log.append(entry)
        return dict(self.summary, log_entries=len(self.log))
