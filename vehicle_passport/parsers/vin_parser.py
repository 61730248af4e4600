"""
Motor de candidats VIN (ISO 3779)

Dos tipus de document físicament diferents:
  generic       → text d'informe d'inspecció (PDF) o OCR sense geometria
  licence_disc  → foto del disc de llicència (text corbat, VIN a la franja baixa)

Cinc estratègies independents generen candidats, que es fusionen per VIN:
  1. keyword        "VIN:", "VN:", "CHASSIS NO:", "VEHICLE ID:" + 17 caràcters
  2. position       (disc) línies amb centre vertical dins la franja 0.4-0.8
  3. pattern        token nu de 17 caràcters
  4. line           línia a línia traient espais (text partit pel disc)
  5. reconstructed  dues línies adjacents concatenades (VIN tallat)

El checksum és filtre dur: els candidats invàlids només sobreviuen com a
últim recurs al camí generic.
"""
import re
import logging
import math
from typing import Literal, Optional
from vehicle_passport.config import settings, VinTuning
from vehicle_passport.models.ocr import BoundingBox, OcrResult
from vehicle_passport.models.candidates import VinCandidate, VinExtraction
from vehicle_passport.services.metrics import MetricsSink, NULL_METRICS
from vehicle_passport.utils.redact import redact_vin

log = logging.getLogger("passport.parser.vin")

DocumentType = Literal["generic", "licence_disc"]

# ---------------------------------------------------------------------------
# Checksum ISO 3779
# ---------------------------------------------------------------------------

# Transliteració lletra → valor (I, O, Q no existeixen)
_VIN_TRANS = {
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 6, "G": 7, "H": 8,
    "J": 1, "K": 2, "L": 3, "M": 4, "N": 5,          "P": 7, "R": 9,
    "S": 2, "T": 3, "U": 4, "V": 5, "W": 6, "X": 7, "Y": 8, "Z": 9,
}
_VIN_WEIGHTS = [8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2]

VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
_VIN_RUN_RE = re.compile(r"[A-HJ-NPR-Z0-9]+")

# Prioritat per desempatar (menor = millor)
_SOURCE_PRIORITY = {"keyword": 0, "position": 1, "pattern": 2, "line": 3, "reconstructed": 4}

_KEYWORD_RE = re.compile(
    r"\b(?:VIN|VN|CHASSIS\s*N[O0]\.?|VEHICLE\s*ID)\s*[:#.\-]?\s*([A-HJ-NPR-Z0-9]{17})(?![A-Z0-9])"
)
_BARE_RE = re.compile(r"(?<![A-Z0-9])([A-HJ-NPR-Z0-9]{17})(?![A-Z0-9])")
_LINE_PREFIX_RE = re.compile(r"^(?:VIN|VN|CHASSISN[O0]|VEHICLEID)[:#.\-]*")


def compute_check_digit(vin: str) -> Optional[str]:
    """Dígit de control esperat (posició 9). None si el VIN no té forma vàlida."""
    vin = vin.upper()
    if not VIN_RE.match(vin):
        return None
    total = sum(
        (int(c) if c.isdigit() else _VIN_TRANS[c]) * _VIN_WEIGHTS[i]
        for i, c in enumerate(vin)
    )
    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def validate_vin_checksum(vin: Optional[str]) -> bool:
    """True si i només si el VIN té 17 caràcters vàlids i el dígit 9 quadra."""
    if not vin:
        return False
    expected = compute_check_digit(vin)
    return expected is not None and vin.upper()[8] == expected


def normalize_vin(raw: Optional[str]) -> str:
    """Majúscules i només alfanumèrics, tallat a 17."""
    return re.sub(r"[^A-Z0-9]", "", (raw or "").upper())[:17]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_plausible(vin: str, tuning: VinTuning) -> bool:
    """Forma de VIN real: alfabet ISO, prou dígits i secció seqüencial numèrica."""
    if not VIN_RE.match(vin):
        return False
    if sum(c.isdigit() for c in vin) < tuning.min_digits:
        return False
    # ISO 3779: els 4 últims caràcters del VIS són numèrics
    return vin[-4:].isdigit()


def _position_bonus(bbox: Optional[BoundingBox], tuning: VinTuning) -> float:
    if bbox is None:
        return 0.0
    cy = bbox.center_y
    if not (tuning.position_band_top <= cy <= tuning.position_band_bottom):
        return 0.0
    dist = math.hypot(bbox.center_x - tuning.position_optimal_x, cy - tuning.position_optimal_y)
    decay = max(0.0, 1.0 - dist / tuning.position_decay_distance)
    return round(tuning.position_bonus_max * decay, 3)


def _squash(line: str) -> str:
    """Majúscules, sense espais interns i sense prefix d'etiqueta."""
    squashed = re.sub(r"\s+", "", line.upper())
    return _LINE_PREFIX_RE.sub("", squashed)


def _windows(run: str, tuning: VinTuning) -> list[str]:
    """Finestres de 17 d'una tirada més llarga que passen checksum."""
    return [
        run[i:i + 17]
        for i in range(len(run) - 16)
        if _is_plausible(run[i:i + 17], tuning) and validate_vin_checksum(run[i:i + 17])
    ]


def _make(value: str, raw: str, source: str, base: float, confidence: float,
          tuning: VinTuning, bonus: float = 0.0) -> VinCandidate:
    score = base + bonus + confidence * tuning.ocr_confidence_weight
    return VinCandidate(
        value=value,
        raw=raw,
        score=round(score, 3),
        confidence=round(confidence, 2),
        source=source,
        checksum_valid=validate_vin_checksum(value),
    )


# ---------------------------------------------------------------------------
# Estratègies
# ---------------------------------------------------------------------------

def _keyword_candidates(ocr: OcrResult, tuning: VinTuning) -> list[VinCandidate]:
    out = []
    for m in _KEYWORD_RE.finditer(ocr.text.upper()):
        vin = m.group(1)
        if _is_plausible(vin, tuning):
            out.append(_make(vin, m.group(0), "keyword", tuning.score_keyword, ocr.confidence, tuning))
    return out


def _pattern_candidates(ocr: OcrResult, tuning: VinTuning) -> list[VinCandidate]:
    out = []
    for m in _BARE_RE.finditer(ocr.text.upper()):
        vin = m.group(1)
        if not _is_plausible(vin, tuning):
            continue
        # Artefacte OCR: l'etiqueta enganxada al token ("VNWDD...", "CHASSIS...")
        # VN és també un WMI real (p.ex. VNK), per això només es descarta si no quadra
        if vin.startswith("CHASSIS") or (vin.startswith("VN") and not validate_vin_checksum(vin)):
            continue
        out.append(_make(vin, m.group(0), "pattern", tuning.score_pattern, ocr.confidence, tuning))
    return out


def _position_candidates(ocr: OcrResult, tuning: VinTuning) -> list[VinCandidate]:
    out = []
    for line in ocr.lines:
        bonus = _position_bonus(line.bbox, tuning)
        if bonus <= 0.0:
            continue
        for run in _VIN_RUN_RE.findall(_squash(line.text)):
            values = [run] if len(run) == 17 and _is_plausible(run, tuning) else _windows(run, tuning)
            for vin in values:
                out.append(_make(vin, line.text, "position", tuning.score_position,
                                 line.confidence, tuning, bonus))
    return out


def _line_candidates(ocr: OcrResult, tuning: VinTuning, document: DocumentType) -> list[VinCandidate]:
    out = []
    for line in ocr.lines:
        bonus = _position_bonus(line.bbox, tuning) if document == "licence_disc" else 0.0
        for run in _VIN_RUN_RE.findall(_squash(line.text)):
            if len(run) == 17:
                if _is_plausible(run, tuning):
                    out.append(_make(run, line.text, "line", tuning.score_line, line.confidence, tuning, bonus))
            elif len(run) > 17:
                for vin in _windows(run, tuning):
                    out.append(_make(vin, line.text, "line", tuning.score_line, line.confidence, tuning, bonus))
            elif len(run) >= tuning.partial_min_length and sum(c.isdigit() for c in run) >= tuning.min_digits:
                # Parcial: només serveix com a últim recurs
                out.append(_make(run, line.text, "line", tuning.score_line, line.confidence, tuning, bonus))
    return out


def _reconstructed_candidates(ocr: OcrResult, tuning: VinTuning, document: DocumentType) -> list[VinCandidate]:
    out = []
    for first, second in zip(ocr.lines, ocr.lines[1:]):
        head = _squash(first.text)
        joined = head + _squash(second.text)
        confidence = min(first.confidence, second.confidence)
        bonus = _position_bonus(second.bbox, tuning) if document == "licence_disc" else 0.0
        for m in _VIN_RUN_RE.finditer(joined):
            run, start = m.group(0), m.start()
            for i in range(len(run) - 16):
                # Només finestres que creuen la unió (la resta ja les cobreix "line")
                begin = start + i
                if not (begin < len(head) < begin + 17):
                    continue
                vin = run[i:i + 17]
                if _is_plausible(vin, tuning) and validate_vin_checksum(vin):
                    out.append(_make(vin, f"{first.text} | {second.text}", "reconstructed",
                                     tuning.score_reconstructed, confidence, tuning, bonus))
    return out


def _merge(candidates: list[VinCandidate]) -> list[VinCandidate]:
    """Dedup per VIN: es queda la millor puntuació (empat → prioritat d'estratègia)."""
    best: dict[str, VinCandidate] = {}
    for c in candidates:
        current = best.get(c.value)
        if current is None or (c.score, -_SOURCE_PRIORITY[c.source]) > (current.score, -_SOURCE_PRIORITY[current.source]):
            best[c.value] = c
    return sorted(
        best.values(),
        key=lambda c: (c.checksum_valid, c.is_full_length, c.score, -_SOURCE_PRIORITY[c.source]),
        reverse=True,
    )


# ---------------------------------------------------------------------------
# API pública
# ---------------------------------------------------------------------------

def generate_candidates(
    ocr: OcrResult,
    document: DocumentType = "generic",
    tuning: Optional[VinTuning] = None,
) -> list[VinCandidate]:
    """Totes les estratègies, fusionades i ordenades (millor primer)."""
    tuning = tuning or settings.vin
    pool: list[VinCandidate] = []
    pool += _keyword_candidates(ocr, tuning)
    if document == "licence_disc":
        pool += _position_candidates(ocr, tuning)
    pool += _pattern_candidates(ocr, tuning)
    pool += _line_candidates(ocr, tuning, document)
    pool += _reconstructed_candidates(ocr, tuning, document)
    return _merge(pool)


def pick_best(candidates: list[VinCandidate], document: DocumentType = "generic") -> Optional[VinCandidate]:
    """
    Regla de selecció:
      1. checksum vàlid → el de més puntuació
      2. licence_disc   → None (els invàlids es descarten)
      3. generic        → qualsevol de 17 caràcters, si no el parcial més llarg
    """
    valid = [c for c in candidates if c.checksum_valid]
    if valid:
        return max(valid, key=lambda c: (c.score, -_SOURCE_PRIORITY[c.source]))
    if document == "licence_disc":
        return None
    full = [c for c in candidates if c.is_full_length]
    if full:
        return max(full, key=lambda c: (c.score, -_SOURCE_PRIORITY[c.source]))
    if candidates:
        return max(candidates, key=lambda c: (len(c.value), c.score))
    return None


def _confidence(best: VinCandidate, tuning: VinTuning) -> float:
    score_norm = min(1.0, max(0.0, best.score / tuning.score_keyword))
    conf = tuning.confidence_ocr_weight * (best.confidence / 100) + tuning.confidence_score_weight * score_norm
    if not best.checksum_valid:
        conf *= tuning.fallback_confidence_factor
    return round(min(1.0, conf), 3)


def extract_vin_from_ocr(
    ocr: OcrResult,
    document: DocumentType = "generic",
    metrics: MetricsSink = NULL_METRICS,
    tuning: Optional[VinTuning] = None,
) -> VinExtraction:
    tuning = tuning or settings.vin
    candidates = generate_candidates(ocr, document, tuning)
    best = pick_best(candidates, document)

    metrics.increment("vin.extractions", document=document)
    metrics.observe("vin.candidates", len(candidates), document=document)

    if best is None:
        metrics.increment("vin.no_match", document=document)
        log.debug("vin_no_match", extra={"document": document, "candidates": len(candidates)})
        return VinExtraction(candidates=candidates[:5])

    confidence = _confidence(best, tuning)
    metrics.observe("vin.confidence", confidence, document=document)
    log.debug("vin_selected", extra={
        "vin_redacted": redact_vin(best.value),
        "source": best.source,
        "checksum_valid": best.checksum_valid,
        "candidates": len(candidates),
    })
    return VinExtraction(
        vin=best.value,
        vin_valid=best.checksum_valid,
        candidates=candidates[:5],
        confidence=confidence,
        source=best.source,
    )


def extract_vin_from_text(text: str, metrics: MetricsSink = NULL_METRICS) -> VinExtraction:
    """Camí generic sobre text pla (informe PDF)."""
    return extract_vin_from_ocr(OcrResult.from_text(text or ""), "generic", metrics)


def should_fallback_to_vision(result: VinExtraction, tess_confidence: float) -> tuple[bool, str]:
    """Decisió Tesseract → Vision per a fotos de disc."""
    if not result.vin:
        return True, "vin_absent"
    if not result.vin_valid:
        return True, "vin_checksum_invalid"
    if tess_confidence < settings.vin.tesseract_min_confidence:
        return True, f"confidence_baixa:{tess_confidence:.0f}"
    return False, "tesseract_acceptat"
