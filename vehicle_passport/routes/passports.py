"""
Rutes de passaports: consulta, entrada manual, segellat i verificació
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from vehicle_passport.config import settings
from vehicle_passport.errors import CryptoError, DraftValidationError, StorageError
from vehicle_passport.models.base_response import PassportRecord, RecordResponse, VerifyResponse
from vehicle_passport.models.passport import validate_draft, validate_sealed
from vehicle_passport.parsers.dekra_parser import clamp_mm
from vehicle_passport.parsers.ev_parser import detect_ev_from_vin
from vehicle_passport.services.key_store import KeyStore, get_key_store
from vehicle_passport.services.sealer import seal_passport, verify_sealed
from vehicle_passport.services.storage import PassportStorage, get_storage
from vehicle_passport.utils.redact import redact_vin

log = logging.getLogger("passport.passports")

router = APIRouter()


class SealRequest(BaseModel):
    vin: str
    key_id: Optional[str] = None
    sealed_at: Optional[str] = None


class TyreEntry(BaseModel):
    fl: Optional[float] = None
    fr: Optional[float] = None
    rl: Optional[float] = None
    rr: Optional[float] = None


def _require_draft(storage: PassportStorage, vin: str) -> dict:
    record = storage.get(vin)
    if record is None or record.draft is None:
        raise HTTPException(status_code=404, detail={"error": "draft_not_found"})
    return dict(record.draft)


def _store_draft(storage: PassportStorage, draft: dict) -> PassportRecord:
    errors = validate_draft(draft)
    if errors:
        raise HTTPException(status_code=422, detail=DraftValidationError(errors).to_dict())
    try:
        return storage.upsert_draft(draft)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=e.to_dict())


# ---------------------------------------------------------------------------
# Consulta
# ---------------------------------------------------------------------------

@router.get("/passports", response_model=list[PassportRecord])
async def list_passports(storage: PassportStorage = Depends(get_storage)):
    return storage.list_records()


@router.get("/passports/{vin}", response_model=PassportRecord)
async def get_passport(vin: str, storage: PassportStorage = Depends(get_storage)):
    record = storage.get(vin)
    if record is None:
        raise HTTPException(status_code=404, detail={"error": "not_found"})
    return record


@router.delete("/passports/{vin}")
async def delete_passport(vin: str, storage: PassportStorage = Depends(get_storage)):
    removed = storage.remove(vin)
    log.info("passport_deleted", extra={"vin_redacted": redact_vin(vin), "existed": removed})
    return {"ok": True}


# ---------------------------------------------------------------------------
# Entrada manual
# ---------------------------------------------------------------------------

@router.put("/passports/{vin}/tyres", response_model=RecordResponse)
async def put_tyres(vin: str, entry: TyreEntry, storage: PassportStorage = Depends(get_storage)):
    """Profunditats mesurades a mà (mm, es limiten a 0-20). Invalida el segell."""
    draft = _require_draft(storage, vin)
    tyres = dict(draft.get("tyres_mm") or {})
    for pos, value in entry.model_dump().items():
        clamped = clamp_mm(value)
        if clamped is not None:
            tyres[pos] = clamped
    draft["tyres_mm"] = tyres
    return RecordResponse(record=_store_draft(storage, draft))


@router.post("/passports/{vin}/ev", response_model=RecordResponse)
async def detect_ev(vin: str, storage: PassportStorage = Depends(get_storage)):
    """Detecció EV pel WMI del VIN, desada al draft."""
    draft = _require_draft(storage, vin)
    draft["ev"] = detect_ev_from_vin(draft["vin"]).model_dump(mode="json", exclude_none=True)
    return RecordResponse(record=_store_draft(storage, draft))


# ---------------------------------------------------------------------------
# Segellat i verificació
# ---------------------------------------------------------------------------

@router.post("/passports/seal", response_model=RecordResponse)
async def seal(
    request: SealRequest,
    storage: PassportStorage = Depends(get_storage),
    keys: KeyStore = Depends(get_key_store),
):
    vin = request.vin.strip()
    if not vin:
        raise HTTPException(status_code=400, detail={"error": "vin_required"})

    private_pem = keys.private_key()
    if private_pem is None:
        raise HTTPException(status_code=500, detail={
            "error": "private_key_missing",
            "message": "No private key found. Generate one with `passport-cli keygen`.",
        })

    draft = _require_draft(storage, vin)
    try:
        sealed = seal_passport(
            draft,
            private_pem,
            key_id=request.key_id or settings.seal_key_id,
            sealed_at=request.sealed_at,
        )
    except DraftValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    except CryptoError as e:
        log.error("seal_crypto_error", extra={"reason": e.reason.value})
        raise HTTPException(status_code=500, detail=e.to_dict())

    try:
        record = storage.upsert_sealed(sealed)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=e.to_dict())
    return RecordResponse(record=record)


@router.get("/verify", response_model=VerifyResponse)
async def verify(
    vin: str = Query(default=""),
    storage: PassportStorage = Depends(get_storage),
    keys: KeyStore = Depends(get_key_store),
):
    """
    Mai modifica l'emmagatzematge. Sense clau pública: valid=false,
    status="unverifiable", reason no_public_key_configured.
    """
    vin = vin.strip()
    if not vin:
        raise HTTPException(status_code=400, detail={"error": "vin_required"})

    record = storage.get(vin)
    if record is None or record.sealed is None:
        raise HTTPException(status_code=404, detail={"error": "sealed_not_found"})

    errors = validate_sealed(record.sealed)
    if errors:
        raise HTTPException(status_code=422, detail={
            "error": "sealed_schema_invalid",
            "details": [e.model_dump() for e in errors],
        })

    try:
        result = verify_sealed(record.sealed, keys.public_key())
    except CryptoError as e:
        raise HTTPException(status_code=500, detail=e.to_dict())

    log.info("passport_verified", extra={
        "vin_redacted": redact_vin(record.vin),
        "status": result.status,
        "reasons": result.reasons,
    })
    seal_block = record.sealed["seal"]
    return VerifyResponse(
        vin=record.vin,
        valid=result.valid,
        status=result.status,
        reasons=result.reasons,
        key_id=seal_block.get("key_id"),
        sealed_ts=seal_block.get("sealed_ts"),
    )
