"""
Tests unitaris del motor de candidats d'odòmetre
"""
import pytest
from vehicle_passport.models.ocr import BoundingBox, OcrResult, OcrWord
from vehicle_passport.models.candidates import OdometerExtraction
from vehicle_passport.parsers.odometer_parser import (
    extract_odometer,
    generate_candidates,
    should_fallback_to_vision,
)
from vehicle_passport.services.metrics import InMemoryMetricsSink


def _values(text):
    return [c.value for c in generate_candidates(OcrResult.from_text(text))]


def _word(text, left, top=0.5, conf=80):
    return OcrWord(text=text, confidence=conf, bbox=BoundingBox(top=top, left=left, width=0.08, height=0.1))


# ---------------------------------------------------------------------------
# Rebuig per context
# ---------------------------------------------------------------------------

class TestContextRejection:
    def test_speed_line_alone(self):
        assert _values("SPEED 120 km/h") == []

    def test_speed_line_excluded_even_with_large_number(self):
        assert _values("145000 km/h") == []

    def test_clock_rejected(self):
        assert _values("12:45") == []
        assert _values("12:45\nODO 45210") == [45210]

    def test_date_rejected(self):
        assert _values("29/04/2024") == []

    def test_out_of_bounds(self):
        assert _values("ODO 500 km") == []
        assert _values("ODO 2500000 km") == []

    def test_trip_penalty(self):
        alone = generate_candidates(OcrResult.from_text("ODO 45210"))[0]
        with_trip = generate_candidates(OcrResult.from_text("TRIP 345.6\nODO 45210"))[0]
        assert with_trip.value == 45210
        assert with_trip.score < alone.score

    def test_digits_inside_vin_ignored(self):
        assert _values("WDD2040082R088866") == []
        assert _values("VIN WDD2040082R088866\nODO 45210") == [45210]

    def test_unit_glued_to_number(self):
        assert _values("123456KM") == [123456]


# ---------------------------------------------------------------------------
# Estratègies i unitats
# ---------------------------------------------------------------------------

class TestGenerateCandidates:
    def test_keyword_anchored(self):
        candidates = generate_candidates(OcrResult.from_text("ODO 123456 km"))
        assert candidates[0].value == 123456
        assert candidates[0].anchored is True
        assert candidates[0].source == "pattern"

    def test_thousand_separator(self):
        assert _values("Km Reading 238,574 KM")[0] == 238574

    def test_miles_converted(self):
        candidates = generate_candidates(OcrResult.from_text("ODO 10000 MILES"))
        assert candidates[0].value == 16093
        assert candidates[0].unit == "mi"

    def test_dedup_by_value(self):
        values = _values("ODO 123456 km")
        assert values.count(123456) == 1

    def test_low_confidence_lines_skipped(self):
        ocr = OcrResult.from_text("54321", confidence=30)
        # el patró exigeix paraula clau o unitat; la línia està per sota del llindar
        assert generate_candidates(ocr) == []

    def test_digit_group(self):
        ocr = OcrResult(
            words=[_word("12", 0.1), _word("34", 0.2), _word("56", 0.3)],
            confidence=80,
            engine="tesseract",
        )
        candidates = generate_candidates(ocr)
        assert candidates[0].value == 123456
        assert candidates[0].source == "digit_group"
        assert candidates[0].raw == "12 34 56"

    def test_digit_group_needs_same_row(self):
        ocr = OcrResult(words=[_word("12", 0.1, top=0.1), _word("34", 0.2, top=0.7)], confidence=80)
        assert generate_candidates(ocr) == []


# ---------------------------------------------------------------------------
# Selecció
# ---------------------------------------------------------------------------

class TestExtractOdometer:
    def test_dekra_text(self):
        text = (
            "Inspection Date: 29/04/2024\n"
            "VIN WDD2040082R088866\n"
            "Km Reading 238,574 KM\n"
            "FL 1 mm FR 0 mm RL 2 mm RR 2 mm"
        )
        result = extract_odometer(OcrResult.from_text(text))
        assert result.km == 238574
        assert result.source == "pattern"
        assert 0.0 < result.confidence <= 1.0

    def test_tie_breaks_on_larger_value(self):
        result = extract_odometer(OcrResult.from_text("54321 km\n65432 km"))
        assert result.km == 65432

    def test_confidence_blend(self):
        ocr = OcrResult(words=[_word("12", 0.1), _word("34", 0.2), _word("56", 0.3)], confidence=80)
        result = extract_odometer(ocr)
        # 0.7 × 0.80 + 0.3 × (20 / 100)
        assert result.confidence == pytest.approx(0.62)

    def test_no_match(self):
        result = extract_odometer(OcrResult.from_text("SPEED 120 km/h"))
        assert result.km is None
        assert result.confidence == 0.0
        assert result.candidates == []

    def test_metrics(self):
        sink = InMemoryMetricsSink()
        extract_odometer(OcrResult.from_text("ODO 45210"), metrics=sink)
        assert sink.counters["odometer.extractions"] == 1
        assert sink.observations["odometer.confidence"]


class TestShouldFallbackToVision:
    def test_absent(self):
        assert should_fallback_to_vision(OdometerExtraction(), 90) == (True, "odometer_absent")

    def test_low_confidence(self):
        assert should_fallback_to_vision(OdometerExtraction(km=45210), 10)[0] is True

    def test_accepted(self):
        assert should_fallback_to_vision(OdometerExtraction(km=45210), 90) == (False, "tesseract_acceptat")
