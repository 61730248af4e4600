"""
Tests unitaris del motor de candidats VIN
"""
import pytest
from vehicle_passport.models.ocr import BoundingBox, OcrLine, OcrResult
from vehicle_passport.models.candidates import VinExtraction
from vehicle_passport.parsers.vin_parser import (
    compute_check_digit,
    extract_vin_from_ocr,
    extract_vin_from_text,
    generate_candidates,
    normalize_vin,
    pick_best,
    should_fallback_to_vision,
    validate_vin_checksum,
)
from vehicle_passport.services.metrics import InMemoryMetricsSink

VALID_VIN = "1HGCM82633A004352"
CORRUPTED_VIN = "1HGCM82643A004352"   # 9è caràcter alterat


def _disc(*lines):
    """OCR de disc: (text, top) → línies amb caixa centrada horitzontalment."""
    ocr_lines = [
        OcrLine(text=text, confidence=90, bbox=BoundingBox(top=top, left=0.2, width=0.6, height=0.1))
        for text, top in lines
    ]
    return OcrResult(text="\n".join(t for t, _ in lines), confidence=90, lines=ocr_lines, engine="tesseract")


# ---------------------------------------------------------------------------
# Checksum ISO 3779
# ---------------------------------------------------------------------------

class TestChecksum:
    @pytest.mark.parametrize("vin", [VALID_VIN, "1M8GDM9AXKP042788", "YARKAAC3100018794"])
    def test_valid(self, vin):
        assert validate_vin_checksum(vin) is True

    def test_check_digit_x(self):
        assert compute_check_digit("1M8GDM9AXKP042788") == "X"

    def test_corrupted_ninth_char(self):
        assert validate_vin_checksum(CORRUPTED_VIN) is False

    def test_lowercase_accepted(self):
        assert validate_vin_checksum(VALID_VIN.lower()) is True

    def test_excluded_letters(self):
        # I, O, Q no formen part de l'alfabet
        assert compute_check_digit("1HGCM82633AO04352") is None
        assert validate_vin_checksum("1HGCM82633AO04352") is False

    def test_wrong_length(self):
        assert validate_vin_checksum(VALID_VIN[:16]) is False

    def test_empty(self):
        assert validate_vin_checksum("") is False
        assert validate_vin_checksum(None) is False

    def test_accepted_vins_rederive_check_digit(self):
        for vin in (VALID_VIN, "1M8GDM9AXKP042788", "YARKAAC3100018794"):
            assert compute_check_digit(vin) == vin[8]


class TestNormalizeVin:
    def test_strips_and_uppercases(self):
        assert normalize_vin(" 1hg-cm8 2633A004352 ") == VALID_VIN

    def test_none(self):
        assert normalize_vin(None) == ""


# ---------------------------------------------------------------------------
# Estratègies
# ---------------------------------------------------------------------------

class TestGenerateCandidates:
    def test_keyword_wins_and_dedups(self):
        candidates = generate_candidates(OcrResult.from_text(f"VIN: {VALID_VIN}"))
        assert len(candidates) == 1
        assert candidates[0].value == VALID_VIN
        assert candidates[0].source == "keyword"
        assert candidates[0].checksum_valid is True

    def test_chassis_keyword(self):
        candidates = generate_candidates(OcrResult.from_text(f"Chassis No: {VALID_VIN}".upper()))
        assert candidates[0].source == "keyword"

    def test_bare_pattern(self):
        candidates = generate_candidates(OcrResult.from_text(f"Registration ref {VALID_VIN} issued"))
        assert candidates[0].value == VALID_VIN
        assert candidates[0].source in ("pattern", "line")

    def test_line_with_spaces(self):
        # Text del disc partit per espais
        candidates = generate_candidates(OcrResult.from_text("1HGCM 8263 3A00 4352"))
        assert [c.value for c in candidates] == [VALID_VIN]
        assert candidates[0].source == "line"

    def test_reconstructed_across_lines(self):
        candidates = generate_candidates(OcrResult.from_text("1HGCM826\n33A004352"))
        assert candidates[0].value == VALID_VIN
        assert candidates[0].source == "reconstructed"

    def test_position_on_licence_disc(self):
        ocr = _disc(("RSA", 0.1), ("LICENCE NO 123", 0.25), (VALID_VIN, 0.6))
        candidates = generate_candidates(ocr, "licence_disc")
        assert candidates[0].value == VALID_VIN
        assert candidates[0].source == "position"

    def test_position_ignored_outside_band(self):
        ocr = _disc((VALID_VIN, 0.05))
        candidates = generate_candidates(ocr, "licence_disc")
        assert all(c.source != "position" for c in candidates)

    def test_no_candidates(self):
        assert generate_candidates(OcrResult.from_text("Cap vehicle aquí")) == []


# ---------------------------------------------------------------------------
# pick_best / extracció
# ---------------------------------------------------------------------------

class TestPickBest:
    def test_valid_preferred_over_higher_score(self):
        text = f"VIN: {CORRUPTED_VIN}\nref {VALID_VIN}"
        best = pick_best(generate_candidates(OcrResult.from_text(text)))
        assert best.value == VALID_VIN

    def test_generic_keeps_invalid_as_fallback(self):
        best = pick_best(generate_candidates(OcrResult.from_text(f"VIN: {CORRUPTED_VIN}")))
        assert best is not None
        assert best.value == CORRUPTED_VIN
        assert best.checksum_valid is False

    def test_licence_disc_discards_invalid(self):
        ocr = _disc((CORRUPTED_VIN, 0.6))
        assert pick_best(generate_candidates(ocr, "licence_disc"), "licence_disc") is None

    def test_partial_longest(self):
        best = pick_best(generate_candidates(OcrResult.from_text("VIN 1HGCM82633A0")))
        assert best.value == "1HGCM82633A0"

    def test_empty(self):
        assert pick_best([]) is None


class TestExtractVin:
    def test_valid_full_confidence(self):
        result = extract_vin_from_text(f"VIN: {VALID_VIN}")
        assert result.vin == VALID_VIN
        assert result.vin_valid is True
        assert result.confidence == pytest.approx(1.0)

    def test_invalid_confidence_halved(self):
        result = extract_vin_from_text(f"VIN: {CORRUPTED_VIN}")
        assert result.vin == CORRUPTED_VIN
        assert result.vin_valid is False
        assert result.confidence == pytest.approx(0.5)

    def test_no_match_is_not_error(self):
        result = extract_vin_from_text("res a veure")
        assert result.vin is None
        assert result.confidence == 0.0
        assert result.candidates == []

    def test_top5_limit(self):
        vins = [VALID_VIN, "1M8GDM9AXKP042788", "YARKAAC3100018794",
                "WDD2040082R088866", "WBA3A5C51CF256551", "5YJ3E1EA7KF317000"]
        result = extract_vin_from_text("\n".join(vins))
        assert len(result.candidates) == 5

    def test_metrics_injected(self):
        sink = InMemoryMetricsSink()
        extract_vin_from_ocr(OcrResult.from_text("res"), metrics=sink)
        assert sink.counters["vin.extractions"] == 1
        assert sink.counters["vin.no_match"] == 1

    def test_deterministic(self):
        a = extract_vin_from_text(f"VIN {VALID_VIN}")
        b = extract_vin_from_text(f"VIN {VALID_VIN}")
        assert a == b


class TestShouldFallbackToVision:
    def test_absent(self):
        assert should_fallback_to_vision(VinExtraction(), 95) == (True, "vin_absent")

    def test_checksum_invalid(self):
        result = VinExtraction(vin=CORRUPTED_VIN, vin_valid=False)
        assert should_fallback_to_vision(result, 95)[0] is True

    def test_low_confidence(self):
        result = VinExtraction(vin=VALID_VIN, vin_valid=True)
        fallback, reason = should_fallback_to_vision(result, 20)
        assert fallback is True
        assert reason.startswith("confidence_baixa")

    def test_accepted(self):
        result = VinExtraction(vin=VALID_VIN, vin_valid=True)
        assert should_fallback_to_vision(result, 90) == (False, "tesseract_acceptat")
