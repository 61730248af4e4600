"""
Contracte d'esquema del passaport de vehicle (draft i segellat)

PassportDraft  → registre mutable, MAI conté bloc `seal`
PassportSealed → draft + seal{hash, sig, key_id, sealed_ts}

Els camps desconeguts es rebutgen (extra="forbid"): un `seal` dins d'un draft
és una violació d'esquema, no un camp que s'ignora.
"""
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from typing import Literal, Optional
from vehicle_passport.models.base_response import ValidationItem

VIN_PATTERN = r"^[A-HJ-NPR-Z0-9]{17}$"
DTC_CODE_PATTERN = r"^[PCBU][0-9A-F]{4}$"

DtcStatus = Literal["green", "amber", "red", "n/a"]
OdometerSource = Literal["DEKRA", "photo_only", "n/a"]

IMAGE_ROLES = (
    "exterior_front_34",
    "exterior_rear_34",
    "left_side",
    "right_side",
    "interior_front",
    "interior_rear",
    "dash_odo",
    "engine_bay",
    "tyre_fl",
    "tyre_fr",
    "tyre_rl",
    "tyre_rr",
)
ImageRole = Literal[
    "exterior_front_34", "exterior_rear_34", "left_side", "right_side",
    "interior_front", "interior_rear", "dash_odo", "engine_bay",
    "tyre_fl", "tyre_fr", "tyre_rl", "tyre_rr",
]


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Blocs
# ---------------------------------------------------------------------------

class DekraInfo(_Strict):
    url: Optional[str] = Field(default=None, pattern=r"^https?://")
    report_id: Optional[str] = None
    inspection_ts: Optional[str] = None                # ISO-8601
    site: Optional[str] = None


class OdometerInfo(_Strict):
    km: Optional[int] = Field(default=None, ge=0)
    source: Optional[OdometerSource] = None


class TyresMm(_Strict):
    fl: Optional[float] = Field(default=None, ge=0, le=20)
    fr: Optional[float] = Field(default=None, ge=0, le=20)
    rl: Optional[float] = Field(default=None, ge=0, le=20)
    rr: Optional[float] = Field(default=None, ge=0, le=20)


class Brakes(_Strict):
    front_pct: Optional[float] = Field(default=None, ge=0, le=100)
    rear_pct: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None


class DtcCode(_Strict):
    code: str = Field(pattern=DTC_CODE_PATTERN)
    desc: Optional[str] = None


class DtcInfo(_Strict):
    status: DtcStatus = "n/a"
    codes: list[DtcCode] = []


class EvInfo(_Strict):
    is_electric: bool = False
    make: Optional[str] = None
    model: Optional[str] = None
    smartcar_compatible: bool = False
    battery_estimate_kwh: Optional[float] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: Literal["vin_heuristic"] = "vin_heuristic"
    notes: Optional[str] = None


class ImageItem(_Strict):
    role: ImageRole
    object_key: str
    url: Optional[str] = None
    sha256: Optional[str] = Field(default=None, pattern=r"^[0-9a-f]{64}$")
    w: Optional[int] = None
    h: Optional[int] = None
    captured_ts: Optional[str] = None


class ImagesInfo(_Strict):
    required: list[ImageRole] = []
    items: list[ImageItem] = []


class Provenance(_Strict):
    captured_by: str = "system"
    site: Optional[str] = None
    ts: str                                            # ISO-8601


class Seal(_Strict):
    hash: str = Field(pattern=r"^[0-9a-f]{64}$")
    sig: str = Field(min_length=1)
    key_id: str = Field(min_length=1)
    sealed_ts: str


# ---------------------------------------------------------------------------
# Registres
# ---------------------------------------------------------------------------

class PassportDraft(_Strict):
    vin: str = Field(pattern=VIN_PATTERN)
    lot_id: str = Field(min_length=1)
    dekra: Optional[DekraInfo] = None
    odometer: Optional[OdometerInfo] = None
    tyres_mm: Optional[TyresMm] = None
    brakes: Optional[Brakes] = None
    dtc: Optional[DtcInfo] = None
    ev: Optional[EvInfo] = None
    images: Optional[ImagesInfo] = None
    remarks: Optional[str] = None
    provenance: Optional[Provenance] = None

    def to_record(self) -> dict:
        """Forma JSON persistida (sense claus nul·les)."""
        return self.model_dump(mode="json", exclude_none=True)


class PassportSealed(PassportDraft):
    seal: Seal


# ---------------------------------------------------------------------------
# Validació → ValidationItem
# ---------------------------------------------------------------------------

def _to_items(exc: ValidationError) -> list[ValidationItem]:
    items = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or None
        evidence = err.get("input")
        items.append(ValidationItem(
            code=f"SCHEMA_{err['type'].upper()}",
            severity="critical",
            field=field,
            message=err["msg"],
            evidence=None if isinstance(evidence, (dict, list)) else (None if evidence is None else str(evidence)),
        ))
    return items


def validate_draft(record: dict) -> list[ValidationItem]:
    """Retorna totes les violacions (llista buida = draft vàlid)."""
    if not isinstance(record, dict):
        return [ValidationItem(code="SCHEMA_NOT_OBJECT", severity="critical", message="El draft ha de ser un objecte JSON.")]
    try:
        PassportDraft.model_validate(record)
    except ValidationError as e:
        return _to_items(e)
    return []


def validate_sealed(record: dict) -> list[ValidationItem]:
    if not isinstance(record, dict):
        return [ValidationItem(code="SCHEMA_NOT_OBJECT", severity="critical", message="El registre segellat ha de ser un objecte JSON.")]
    try:
        PassportSealed.model_validate(record)
    except ValidationError as e:
        return _to_items(e)
    return []
