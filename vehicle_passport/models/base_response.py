"""
Contractes de resposta de l'API

Extracció (no es persisteix):
  VIN       → {"vin", "vinValid", "candidates": [top5], "confidence"}
  Odòmetre  → {"km", "unit": "km", "candidates": [{value, raw, score, source}], "confidence"}

Passaports:
  Ingesta   → {"ok", "coverage": "n/8", "record"}
  Verificar → {"vin", "valid", "status", "reasons", "key_id", "sealed_ts"}

Els errors de validació es normalitzen sempre a ValidationItem.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Literal, Optional


class ValidationItem(BaseModel):
    """Ítem normalitzat d'error o alerta."""
    code: str                                          # p.ex. "SCHEMA_STRING_PATTERN_MISMATCH"
    severity: Literal["warning", "error", "critical"]
    field: Optional[str] = None                        # camp afectat (ruta amb punts)
    message: str                                       # text llegible
    evidence: Optional[str] = None                     # valor llegit que genera el problema
    suggested_fix: Optional[str] = None                # recomanació


class RawOCR(BaseModel):
    """Metadades del motor OCR que ha processat la imatge."""
    ocr_engine: Literal["tesseract", "google_vision", "text"]
    ocr_confidence: float  # 0-100
    duration_ms: Optional[int] = None


class MetaInfo(BaseModel):
    success: bool
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Extracció
# ---------------------------------------------------------------------------

class OdometerCandidateOut(BaseModel):
    value: int
    raw: str
    score: float
    source: str


class VinExtractionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vin: Optional[str] = None
    vin_valid: bool = Field(default=False, alias="vinValid")
    candidates: list[str] = []
    confidence: float = 0.0
    raw: Optional[RawOCR] = None
    meta: Optional[MetaInfo] = None


class OdometerExtractionResponse(BaseModel):
    km: Optional[int] = None
    unit: Literal["km"] = "km"
    candidates: list[OdometerCandidateOut] = []
    confidence: float = 0.0
    raw: Optional[RawOCR] = None
    meta: Optional[MetaInfo] = None


# ---------------------------------------------------------------------------
# Passaports
# ---------------------------------------------------------------------------

class PassportRecord(BaseModel):
    """Registre emmagatzemat per VIN: draft actual + còpia segellada opcional."""
    vin: str
    draft: Optional[dict[str, Any]] = None
    sealed: Optional[dict[str, Any]] = None
    updated_at: str


class IngestResponse(BaseModel):
    ok: bool = True
    coverage: str
    record: PassportRecord


class RecordResponse(BaseModel):
    ok: bool = True
    record: PassportRecord


class VerifyResponse(BaseModel):
    vin: str
    valid: bool
    status: Literal["verified", "tampered", "unverifiable"]
    reasons: list[str] = []
    key_id: Optional[str] = None
    sealed_ts: Optional[str] = None
