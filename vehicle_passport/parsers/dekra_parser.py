"""
Parser d'informes d'inspecció DEKRA (text de PDF) → PassportDraft

Arquitectura de doble passada, igual que la resta de parsers:
  Phase 1 (extracció raw): VIN, data d'inspecció, lloc, odòmetre, pneumàtics, DTC
  Phase 2 (muntatge del draft): clamp de profunditats, opcions de l'operador,
            comprovació del VIN esperat, provinença

El draft resultant es valida a fora (ruta / CLI) contra l'esquema.
"""
import re
import math
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from pydantic import BaseModel
from vehicle_passport.config import settings
from vehicle_passport.errors import DraftValidationError, VinMismatchError
from vehicle_passport.models.base_response import ValidationItem
from vehicle_passport.models.ocr import OcrResult
from vehicle_passport.models.passport import DtcInfo
from vehicle_passport.parsers import odometer_parser, vin_parser
from vehicle_passport.parsers.dtc_parser import classify_dtc
from vehicle_passport.services.metrics import MetricsSink, NULL_METRICS
from vehicle_passport.utils.redact import redact_vin

log = logging.getLogger("passport.parser.dekra")

# ---------------------------------------------------------------------------
# Patrons
# ---------------------------------------------------------------------------

_DATE_LABEL_RE = re.compile(
    r"(Inspection\s*Date|Inspected\s*on|Date\s*of\s*Inspection|Report\s*Date|Date)\s*:?\s*"
    r"([0-3]?\d[/.\-][01]?\d[/.\-](?:\d{4}|\d{2}))\b",
    re.IGNORECASE,
)
_ANY_DATE_RE = re.compile(r"\b([0-3]?\d)[/.\-]([01]?\d)[/.\-](\d{4}|\d{2})\b")
_SITE_RE = re.compile(
    r"DEKRA|Inspection\s*Location|We\s*Buy\s*Cars|Branch|Randburg|Brackengate|Cape\s*Town",
    re.IGNORECASE,
)
_TYRE_HINT_RE = re.compile(r"Tyre|Tire|Tread", re.IGNORECASE)
_MM_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*mm\b", re.IGNORECASE)
_TYRE_LABELS = {
    "fl": r"FL|LF|Front\s*Left|Left\s*Front",
    "fr": r"FR|RF|Front\s*Right|Right\s*Front",
    "rl": r"RL|LR|Rear\s*Left|Left\s*Rear",
    "rr": r"RR|Rear\s*Right|Right\s*Rear",
}

TYRE_MIN_MM = 0.0
TYRE_MAX_MM = 20.0
SITE_MAX_CHARS = 160

# Camps que compten per a la cobertura d'una ingesta
COVERAGE_FIELDS = [
    "vin", "dekra.inspection_ts", "dekra.site", "odometer.km",
    "tyres_mm.fl", "tyres_mm.fr", "tyres_mm.rl", "tyres_mm.rr",
]


class DekraExtracted(BaseModel):
    """Valors tal com surten del text (Phase 1)."""
    vin: Optional[str] = None
    vin_valid: bool = False
    inspection_ts: Optional[str] = None
    site: Optional[str] = None
    odometer_km: Optional[int] = None
    tyres: dict[str, Optional[float]] = {"fl": None, "fr": None, "rl": None, "rr": None}
    dtc: DtcInfo = DtcInfo()


class DraftOptions(BaseModel):
    lot_id: Optional[str] = None
    dekra_url: Optional[str] = None
    report_id: Optional[str] = None
    site_hint: Optional[str] = None
    captured_by: Optional[str] = None
    expected_vin: Optional[str] = None
    now_iso: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _report_tz() -> timezone:
    return timezone(timedelta(hours=settings.report_utc_offset_hours))


def normalize_date_iso(value: Optional[str]) -> Optional[str]:
    """dd/mm/(yy|yyyy) → ISO-8601 a mitjanit, hora local de l'informe."""
    if not value:
        return None
    m = _ANY_DATE_RE.search(value)
    if not m:
        return None
    dd, mm, yy = int(m.group(1)), int(m.group(2)), m.group(3)
    year = 2000 + int(yy) if len(yy) == 2 else int(yy)
    try:
        dt = datetime(year, mm, dd, tzinfo=_report_tz())
    except ValueError:
        return None
    return dt.isoformat(timespec="milliseconds")


def clamp_mm(value: Optional[float]) -> Optional[float]:
    """Profunditat de pneumàtic dins [0, 20] mm; None si no és un número."""
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v):
        return None
    return max(TYRE_MIN_MM, min(TYRE_MAX_MM, v))


def _mm(raw: str) -> float:
    return float(raw.replace(",", "."))


def _compact(block: dict) -> dict:
    return {k: v for k, v in block.items() if v is not None and v != ""}


def _lookup(record: dict, path: str):
    cur = record
    for key in path.split("."):
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def compute_coverage(draft: dict) -> str:
    """Quants camps clau s'han omplert, "n/8"."""
    filled = sum(1 for p in COVERAGE_FIELDS if _lookup(draft, p) not in (None, ""))
    return f"{filled}/{len(COVERAGE_FIELDS)}"


# ---------------------------------------------------------------------------
# Parser principal
# ---------------------------------------------------------------------------

class DekraParser:

    @staticmethod
    def extract_inspection_date(text: str) -> Optional[str]:
        """Data etiquetada primer; si no, la primera data del document."""
        labelled = _DATE_LABEL_RE.search(text)
        if labelled:
            return normalize_date_iso(labelled.group(2))
        any_date = _ANY_DATE_RE.search(text)
        return normalize_date_iso(any_date.group(0)) if any_date else None

    @staticmethod
    def extract_site(text: str) -> Optional[str]:
        """Línia amb paraula clau de lloc + la següent línia no buida."""
        lines = [l.strip() for l in text.split("\n")]
        for i, line in enumerate(lines):
            if _SITE_RE.search(line):
                following = next((l for l in lines[i + 1:] if len(l) > 3), "")
                return f"{line} {following}".strip()[:SITE_MAX_CHARS]
        return None

    @staticmethod
    def extract_odometer_km(text: str) -> Optional[int]:
        """Només lectures ancorades per paraula clau a la mateixa línia."""
        candidates = odometer_parser.generate_candidates(OcrResult.from_text(text))
        anchored = [c for c in candidates if c.anchored]
        return anchored[0].value if anchored else None

    @staticmethod
    def extract_tyres(text: str) -> dict[str, Optional[float]]:
        """
        1. Etiquetes FL/FR/RL/RR seguides de "N mm"
        2. Si no n'hi ha cap: bloc de línies amb "Tyre/Tread" → primers 4 "N mm"
        """
        tyres: dict[str, Optional[float]] = {"fl": None, "fr": None, "rl": None, "rr": None}
        for pos, label in _TYRE_LABELS.items():
            m = re.search(rf"\b(?:{label})\b\s*[:\-]?\s*(\d+(?:[.,]\d+)?)\s*mm\b", text, re.IGNORECASE)
            if m:
                tyres[pos] = _mm(m.group(1))
        if any(v is not None for v in tyres.values()):
            return tyres

        block = "\n".join(l for l in text.split("\n") if _TYRE_HINT_RE.search(l))
        values = [_mm(v) for v in _MM_RE.findall(block)][:4]
        for pos, value in zip(("fl", "fr", "rl", "rr"), values):
            tyres[pos] = value
        return tyres

    # ------------------------------------------------------------------
    # PHASE 1: Extracció raw
    # ------------------------------------------------------------------

    @staticmethod
    def parse(text: str, metrics: MetricsSink = NULL_METRICS) -> DekraExtracted:
        vin_result = vin_parser.extract_vin_from_text(text, metrics)
        vin = vin_result.vin if vin_result.vin and len(vin_result.vin) == 17 else None
        return DekraExtracted(
            vin=vin,
            vin_valid=vin_result.vin_valid if vin else False,
            inspection_ts=DekraParser.extract_inspection_date(text),
            site=DekraParser.extract_site(text),
            odometer_km=DekraParser.extract_odometer_km(text),
            tyres=DekraParser.extract_tyres(text),
            dtc=classify_dtc(text),
        )

    # ------------------------------------------------------------------
    # PHASE 2: Muntatge del draft
    # ------------------------------------------------------------------

    @staticmethod
    def build_draft(data: DekraExtracted, options: Optional[DraftOptions] = None) -> dict:
        """
        Raises:
            VinMismatchError: expected_vin no coincideix amb el VIN llegit
            DraftValidationError: no hi ha VIN ni llegit ni esperat
        """
        options = options or DraftOptions()
        expected = vin_parser.normalize_vin(options.expected_vin) or None
        vin = data.vin

        if expected and vin and vin != expected:
            log.warning("dekra_vin_mismatch", extra={
                "expected_redacted": redact_vin(expected),
                "parsed_redacted": redact_vin(vin),
            })
            raise VinMismatchError(expected, vin)
        vin = vin or expected
        if not vin:
            raise DraftValidationError([ValidationItem(
                code="VIN_NOT_FOUND",
                severity="critical",
                field="vin",
                message="No s'ha trobat cap VIN de 17 caràcters a l'informe.",
                suggested_fix="Indicar expected_vin o revisar el PDF.",
            )])

        site = options.site_hint or data.site
        now = options.now_iso or datetime.now(_report_tz()).isoformat(timespec="milliseconds")
        dekra_url = options.dekra_url if options.dekra_url and re.match(r"^https?://", options.dekra_url, re.IGNORECASE) else None

        draft: dict = {"vin": vin, "lot_id": options.lot_id or "N/A"}

        dekra = _compact({
            "url": dekra_url,
            "report_id": options.report_id,
            "inspection_ts": data.inspection_ts,
            "site": site,
        })
        if dekra:
            draft["dekra"] = dekra

        draft["odometer"] = _compact({
            "km": data.odometer_km,
            "source": "DEKRA" if data.odometer_km is not None else "n/a",
        })

        tyres = _compact({pos: clamp_mm(v) for pos, v in data.tyres.items()})
        if tyres:
            draft["tyres_mm"] = tyres

        # "n/a" es conserva: és un senyal diferent de "green"
        draft["dtc"] = data.dtc.model_dump(mode="json", exclude_none=True)

        draft["provenance"] = _compact({
            "captured_by": options.captured_by or "system",
            "site": site,
            "ts": now,
        })
        return draft

    @staticmethod
    def map_to_draft(text: str, options: Optional[DraftOptions] = None,
                     metrics: MetricsSink = NULL_METRICS) -> dict:
        data = DekraParser.parse(text, metrics)
        draft = DekraParser.build_draft(data, options)
        log.info("dekra_mapped", extra={
            "vin_redacted": redact_vin(draft["vin"]),
            "vin_valid": data.vin_valid,
            "coverage": compute_coverage(draft),
            "dtc_status": data.dtc.status,
        })
        return draft


# Singleton
dekra_parser = DekraParser()
