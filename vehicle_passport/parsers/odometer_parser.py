"""
Motor de candidats d'odòmetre (foto del quadre d'instruments)

Ha de distingir l'odòmetre de: velocímetre, comptador parcial (TRIP),
rellotge i soroll de dígits. Tres estratègies, sempre totes, candidats en comú:
  pattern      número ancorat per paraula clau o unitat (ODO 123456 / 123456 km)
  line         qualsevol número en línies OCR amb confiança suficient
  digit_group  paraules de 1-3 dígits a la mateixa fila reagrupades (displays
               de segments que l'OCR trosseja)

Puntuació additiva (no probabilística), constants a OdometerTuning.
"""
import re
import logging
from statistics import mean
from typing import Optional
from vehicle_passport.config import settings, OdometerTuning
from vehicle_passport.models.ocr import OcrResult, OcrWord
from vehicle_passport.models.candidates import OdometerCandidate, OdometerExtraction
from vehicle_passport.services.metrics import MetricsSink, NULL_METRICS

log = logging.getLogger("passport.parser.odometer")

# ---------------------------------------------------------------------------
# Patrons
# ---------------------------------------------------------------------------

_SPEED_RE = re.compile(r"KM\s*/\s*H|\bMPH\b|\bKPH\b|SPEED")
_CLOCK_RE = re.compile(r"(?<!\d)\d{1,2}:\d{2}(?!\d)")
_DATE_RE = re.compile(r"(?<!\d)\d{1,4}[/.\-]\d{1,2}[/.\-]\d{2,4}(?!\d)")
_KEYWORD_RE = re.compile(r"\b(?:ODO|ODOMETER|MILEAGE|TOTAL|KMS?)\b|KM\s*READING")
_TRIP_RE = re.compile(r"\bTRIP\b")
_MILES_RE = re.compile(r"\b(?:MILES?|MI)\b")

# Número amb separadors de milers opcionals ("238,574", "238.574", "238 574")
_NUMBER = r"\d{1,3}(?:[,.]\d{3})+|\d{1,3}(?: \d{3})+(?![\d,.])|\d+"
# Dígits enganxats a lletres (VIN, matrícula) no compten; només s'admet una unitat al darrere
_NUMBER_RE = re.compile(rf"(?<![A-Z\d,.])({_NUMBER})(?!\d)(?!(?!KMS?\b|MILES?\b|MI\b)[A-Z])")
_ANCHORED_RE = re.compile(
    rf"(?:\bODO(?:METER)?\b|\bMILEAGE\b|\bTOTAL\b|KM\s*READING)\s*[:.]?\s*({_NUMBER})\s*(KMS?|MILES?|MI)?\b"
    rf"|(?<![A-Z\d,.])({_NUMBER})\s*(KMS?|MILES?|MI)\b(?!\s*/)"
)
_SMALL_DIGITS_RE = re.compile(r"^\d{1,3}$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _blocked_spans(line: str) -> list[tuple[int, int]]:
    """Trams de rellotge (H:MM / HH:MM) i dates: es rebutgen sense puntuar."""
    return [m.span() for m in _CLOCK_RE.finditer(line)] + [m.span() for m in _DATE_RE.finditer(line)]


def _inside(span: tuple[int, int], blocked: list[tuple[int, int]]) -> bool:
    return any(span[0] < b_end and b_start < span[1] for b_start, b_end in blocked)


def _colon_adjacent(line: str, start: int, end: int) -> bool:
    """Dígits enganxats a dos punts ("123:4567"): forma de rellotge, no d'odòmetre."""
    return bool(re.search(r"\d:$", line[:start])) or bool(re.match(r":\d", line[end:]))


def _to_km(raw: str, unit: str, tuning: OdometerTuning) -> tuple[Optional[int], str]:
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return None, "km"
    value = int(digits)
    if unit == "mi":
        return round(value * tuning.miles_to_km), "mi"
    return value, "km"


def _unit_for(line: str, explicit: Optional[str]) -> str:
    if explicit:
        return "mi" if explicit.upper().startswith("MI") else "km"
    if _MILES_RE.search(line) and not re.search(r"\bKMS?\b", line):
        return "mi"
    return "km"


def _score(raw: str, lines: list[str], idx: int, colon: bool, tuning: OdometerTuning) -> tuple[float, bool]:
    """Retorna (puntuació, ancorat)."""
    score = 0.0
    digit_count = sum(c.isdigit() for c in raw)
    if 4 <= digit_count <= 6:
        score += tuning.digit_count_bonus

    here = lines[idx]
    neighbours = [lines[j] for j in (idx - 1, idx + 1) if 0 <= j < len(lines)]
    anchored = bool(_KEYWORD_RE.search(here))
    if anchored:
        score += tuning.keyword_same_line_bonus
    elif any(_KEYWORD_RE.search(n) for n in neighbours):
        score += tuning.keyword_adjacent_line_bonus

    if re.search(r"\d[,. ]\d{3}", raw):
        score += tuning.thousand_separator_bonus

    if _TRIP_RE.search(here) or any(_TRIP_RE.search(n) for n in neighbours):
        score -= tuning.trip_penalty

    if colon or ":" in raw:
        score -= tuning.clock_penalty
    return score, anchored


def _accept(value: Optional[int], tuning: OdometerTuning) -> bool:
    return value is not None and value >= 10 and tuning.min_km <= value <= tuning.max_km


# ---------------------------------------------------------------------------
# Estratègies
# ---------------------------------------------------------------------------

def _pattern_candidates(ocr: OcrResult, tuning: OdometerTuning) -> list[OdometerCandidate]:
    lines = [l.strip().upper() for l in ocr.text.split("\n") if l.strip()]
    out = []
    for idx, line in enumerate(lines):
        if _SPEED_RE.search(line):
            continue
        blocked = _blocked_spans(line)
        for m in _ANCHORED_RE.finditer(line):
            group = 1 if m.group(1) else 3
            raw, unit_token = m.group(group), m.group(group + 1)
            span = m.span(group)
            if _inside(span, blocked):
                continue
            value, unit = _to_km(raw, _unit_for(line, unit_token), tuning)
            if not _accept(value, tuning):
                continue
            score, anchored = _score(raw, lines, idx, _colon_adjacent(line, *span), tuning)
            out.append(OdometerCandidate(
                value=value, raw=raw, score=score, confidence=ocr.confidence,
                source="pattern", unit=unit, anchored=anchored, line_index=idx,
            ))
    return out


def _line_candidates(ocr: OcrResult, tuning: OdometerTuning) -> list[OdometerCandidate]:
    lines = [l.text.strip().upper() for l in ocr.lines]
    out = []
    for idx, ocr_line in enumerate(ocr.lines):
        line = lines[idx]
        if ocr_line.confidence < tuning.min_line_confidence or _SPEED_RE.search(line):
            continue
        blocked = _blocked_spans(line)
        for m in _NUMBER_RE.finditer(line):
            if _inside(m.span(1), blocked):
                continue
            raw = m.group(1)
            value, unit = _to_km(raw, _unit_for(line, None), tuning)
            if not _accept(value, tuning):
                continue
            score, anchored = _score(raw, lines, idx, _colon_adjacent(line, *m.span(1)), tuning)
            out.append(OdometerCandidate(
                value=value, raw=raw, score=score, confidence=ocr_line.confidence,
                source="line", unit=unit, anchored=anchored, line_index=idx,
            ))
    return out


def _rows(words: list[OcrWord], tuning: OdometerTuning) -> list[list[OcrWord]]:
    """Agrupa paraules en files per proximitat vertical, i ordena cada fila d'esquerra a dreta."""
    placed = sorted((w for w in words if w.bbox is not None), key=lambda w: w.bbox.center_y)
    rows: list[list[OcrWord]] = []
    for word in placed:
        if rows:
            last = rows[-1]
            row_cy = mean(w.bbox.center_y for w in last)
            height = max(max(w.bbox.height for w in last), word.bbox.height)
            if abs(word.bbox.center_y - row_cy) <= tuning.row_tolerance * height:
                last.append(word)
                continue
        rows.append([word])
    return [sorted(r, key=lambda w: w.bbox.left) for r in rows]


def _digit_group_candidates(ocr: OcrResult, tuning: OdometerTuning) -> list[OdometerCandidate]:
    rows = _rows(ocr.words, tuning)
    row_texts = [" ".join(w.text for w in row).upper() for row in rows]
    out = []
    for idx, row in enumerate(rows):
        if _SPEED_RE.search(row_texts[idx]):
            continue
        run: list[OcrWord] = []
        for word in row + [None]:
            if word is not None and _SMALL_DIGITS_RE.match(word.text.strip()):
                run.append(word)
                continue
            if len(run) >= 2:
                raw = " ".join(w.text.strip() for w in run)
                value, unit = _to_km(raw, _unit_for(row_texts[idx], None), tuning)
                if _accept(value, tuning):
                    # Sense separador: els blancs entre segments no són milers
                    score, anchored = _score(raw.replace(" ", ""), row_texts, idx, False, tuning)
                    out.append(OdometerCandidate(
                        value=value, raw=raw, score=score,
                        confidence=round(mean(w.confidence for w in run), 2),
                        source="digit_group", unit=unit, anchored=anchored, line_index=idx,
                    ))
            run = []
    return out


def _dedup(candidates: list[OdometerCandidate]) -> list[OdometerCandidate]:
    """Un candidat per valor (el de més puntuació), ordenats per (score, valor)."""
    best: dict[int, OdometerCandidate] = {}
    for c in candidates:
        if c.value not in best or c.score > best[c.value].score:
            best[c.value] = c
    return sorted(best.values(), key=lambda c: (c.score, c.value), reverse=True)


# ---------------------------------------------------------------------------
# API pública
# ---------------------------------------------------------------------------

def generate_candidates(ocr: OcrResult, tuning: Optional[OdometerTuning] = None) -> list[OdometerCandidate]:
    tuning = tuning or settings.odometer
    pool = _pattern_candidates(ocr, tuning)
    pool += _line_candidates(ocr, tuning)
    pool += _digit_group_candidates(ocr, tuning)
    return _dedup(pool)


def extract_odometer(
    ocr: OcrResult,
    metrics: MetricsSink = NULL_METRICS,
    tuning: Optional[OdometerTuning] = None,
) -> OdometerExtraction:
    """
    Millor lectura en km. Empat de puntuació → valor més gran.
    confidence = 0.7 × confiança OCR + 0.3 × puntuació normalitzada (fracció).
    """
    tuning = tuning or settings.odometer
    candidates = generate_candidates(ocr, tuning)
    metrics.increment("odometer.extractions")
    metrics.observe("odometer.candidates", len(candidates))

    if not candidates:
        metrics.increment("odometer.no_match")
        log.debug("odometer_no_match")
        return OdometerExtraction()

    best = candidates[0]
    score_norm = min(1.0, max(0.0, best.score / tuning.score_normalizer))
    confidence = round(
        tuning.confidence_ocr_weight * (best.confidence / 100) + tuning.confidence_score_weight * score_norm,
        3,
    )
    metrics.observe("odometer.confidence", confidence)
    log.debug("odometer_selected", extra={
        "km": best.value,
        "source": best.source,
        "score": best.score,
        "candidates": len(candidates),
    })
    return OdometerExtraction(
        km=best.value,
        candidates=candidates[:5],
        confidence=confidence,
        source=best.source,
    )


def should_fallback_to_vision(result: OdometerExtraction, tess_confidence: float) -> tuple[bool, str]:
    if result.km is None:
        return True, "odometer_absent"
    if tess_confidence < settings.odometer.tesseract_min_confidence:
        return True, f"confidence_baixa:{tess_confidence:.0f}"
    return False, "tesseract_acceptat"
