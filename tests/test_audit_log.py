import pytest

from qaqc.models.audit_log import AuditLog, GeoLogEntry, ReviewLogEntry, SiteCodeLogEntry


class TestAuditLog:
    def test_empty_log_keeps_headers(self):
        frame = AuditLog(ReviewLogEntry).to_frame()
        assert frame.empty
        assert list(frame.columns) == [
            "row", "site", "column", "original_value", "value",
            "issue", "direction", "action_taken", "note",
        ]

    def test_geo_column_order(self):
        columns = AuditLog(GeoLogEntry).columns
        assert columns[:4] == ["site", "row", "lat_0m", "lat_30m"]
        assert columns[-2:] == ["moisture_class", "unparseable"]

    def test_entries_stay_in_append_order(self):
        log = AuditLog(SiteCodeLogEntry)
        log.append(SiteCodeLogEntry(row=3, original_site="SC4", corrected_site="SpCr4"))
        log.append(SiteCodeLogEntry(row=1, original_site="SC1", corrected_site="SpCr1"))
        frame = log.to_frame()
        assert len(log) == 2
        assert list(frame["row"]) == [3, 1]
        assert [e.corrected_site for e in log] == ["SpCr4", "SpCr1"]

    def test_rejects_foreign_entries(self):
        log = AuditLog(ReviewLogEntry)
        with pytest.raises(TypeError):
            log.append(SiteCodeLogEntry(row=0, original_site="a", corrected_site="b"))
