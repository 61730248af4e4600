"""
Tests del JSON canònic
"""
import json
import pytest
from vehicle_passport.errors import BadInputError
from vehicle_passport.utils.canonical import canonical_bytes, canonicalize, normalize, strip_seal


class TestCanonicalize:
    def test_key_order_independent(self):
        a = {"b": 1, "a": {"y": 2, "x": [3, 1]}}
        b = {"a": {"x": [3, 1], "y": 2}, "b": 1}
        assert canonicalize(a) == canonicalize(b)
        assert canonicalize(a) == '{"a":{"x":[3,1],"y":2},"b":1}'

    def test_arrays_keep_order(self):
        assert canonicalize([3, 1, 2]) == "[3,1,2]"

    def test_float_rounding(self):
        assert canonicalize({"v": 1.23456}) == '{"v":1.235}'
        assert canonicalize({"v": 0.1 + 0.2}) == '{"v":0.3}'

    def test_integral_float_becomes_int(self):
        assert canonicalize({"fl": 2.0}) == '{"fl":2}'
        assert canonicalize({"fl": 2.0}) == canonicalize({"fl": 2})

    def test_huge_float_not_rounded(self):
        assert canonicalize({"kwh": 1e306}) == '{"kwh":' + str(int(1e306)) + '}'
        assert canonicalize({"kwh": 2.0 ** 60}) == canonicalize({"kwh": 2 ** 60})

    def test_strings_trimmed(self):
        assert canonicalize({"site": "  DEKRA Randburg \n"}) == '{"site":"DEKRA Randburg"}'

    def test_bool_and_null(self):
        assert canonicalize({"a": True, "b": None, "c": False}) == '{"a":true,"b":null,"c":false}'

    def test_unicode_literal(self):
        assert canonical_bytes({"s": "Café"}) == '{"s":"Café"}'.encode("utf-8")

    def test_idempotent(self):
        value = {"z": [1.0001, {"k": " v "}], "a": 5.5555}
        once = canonicalize(value)
        assert canonicalize(json.loads(once)) == once

    def test_non_finite_rejected(self):
        with pytest.raises(BadInputError):
            canonicalize({"v": float("nan")})

    def test_unknown_type_rejected(self):
        with pytest.raises(BadInputError):
            normalize({"v": object()})


class TestStripSeal:
    def test_removes_seal_only(self):
        record = {"vin": "X", "seal": {"hash": "h"}}
        assert strip_seal(record) == {"vin": "X"}
        assert "seal" in record
