"""
Tests de redacció per a logs
"""
from vehicle_passport.utils.redact import redact_name, redact_record_info, redact_vin


class TestRedactVin:
    def test_keeps_wmi_and_tail(self):
        assert redact_vin("1HGCM82633A004352") == "1HG************52"

    def test_short(self):
        assert redact_vin("1HG") == "***"

    def test_none(self):
        assert redact_vin(None) == "***"


class TestRedactName:
    def test_name(self):
        assert redact_name("THANDO") == "T*****"

    def test_empty(self):
        assert redact_name("") == "***"


class TestRedactRecordInfo:
    def test_no_plain_vin(self):
        info = redact_record_info("1HGCM82633A004352", "7/8", "pdf")
        assert "1HGCM82633A004352" not in info.values()
        assert info["coverage"] == "7/8"
        assert info["engine"] == "pdf"

    def test_operator_redacted(self):
        info = redact_record_info("1HGCM82633A004352", "7/8", "text", "inspector-3")
        assert info["captured_by_redacted"] == "i**********"
        assert "inspector-3" not in info.values()

    def test_operator_absent(self):
        assert redact_record_info("1HGCM82633A004352", "7/8", "text")["captured_by_redacted"] == "***"
