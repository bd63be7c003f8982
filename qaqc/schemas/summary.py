from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class PassSummary(BaseModel):
    keyword: str
    filename: str
    pass_name: str              # 'site_code' | 'outlier' | 'cover' | 'geo'
    log_file: Optional[str]
    log_entries: int
    counts: dict[str, Any]


class YearReport(BaseModel):
    year: str
    datasets_loaded: list[str]
    datasets_skipped: list[str]
    passes: list[PassSummary]

    @property
    def total_log_entries(self) -> int:
        return sum(p.log_entries for p in self.passes)
