"""
Ruta d'ingesta d'informes DEKRA (PDF o text)
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from vehicle_passport.config import settings
from vehicle_passport.errors import BadInputError, DraftValidationError, StorageError, VinMismatchError
from vehicle_passport.models.base_response import IngestResponse
from vehicle_passport.models.passport import validate_draft
from vehicle_passport.parsers.dekra_parser import DraftOptions, compute_coverage, dekra_parser
from vehicle_passport.services.metrics import LoggingMetricsSink
from vehicle_passport.services.pdf_loader import load_pdf, normalize_whitespace
from vehicle_passport.services.storage import PassportStorage, get_storage
from vehicle_passport.utils.redact import redact_record_info

log = logging.getLogger("passport.ingest")

MIN_TEXT_CHARS = 10

router = APIRouter()
_metrics = LoggingMetricsSink()


@router.post("/dekra", response_model=IngestResponse)
async def ingest_dekra(
    pdf: Optional[UploadFile] = File(default=None),
    text: Optional[str] = Form(default=None),
    lot_id: Optional[str] = Form(default=None),
    dekra_url: Optional[str] = Form(default=None),
    report_id: Optional[str] = Form(default=None),
    site_hint: Optional[str] = Form(default=None),
    captured_by: Optional[str] = Form(default=None),
    expected_vin: Optional[str] = Form(default=None),
    storage: PassportStorage = Depends(get_storage),
):
    """
    Informe DEKRA → draft validat → emmagatzemat.

    - 400 sense PDF ni text
    - 409 si expected_vin no coincideix amb el VIN llegit (mai es fusiona)
    - 422 si el draft no compleix l'esquema
    """
    body: str = ""
    if pdf is not None:
        content = await pdf.read()
        if len(content) > settings.max_pdf_size_mb * 1024 * 1024:
            raise HTTPException(status_code=413, detail=f"PDF massa gran. Màxim {settings.max_pdf_size_mb}MB.")
        try:
            loaded = await run_in_threadpool(load_pdf, content, pdf.filename or "<upload>")
        except BadInputError as e:
            raise HTTPException(status_code=400, detail=e.to_dict())
        body = loaded.text
        if loaded.is_likely_scanned:
            log.warning("ingest_pdf_likely_scanned", extra={"chars": len(body), "bytes": loaded.bytes})
    elif text:
        body = normalize_whitespace(text)

    if len(body) < MIN_TEXT_CHARS:
        raise HTTPException(status_code=400, detail={"error": "no_pdf_or_text"})

    options = DraftOptions(
        lot_id=lot_id,
        dekra_url=dekra_url,
        report_id=report_id,
        site_hint=site_hint,
        captured_by=captured_by,
        expected_vin=expected_vin,
    )

    try:
        draft = dekra_parser.map_to_draft(body, options, _metrics)
    except VinMismatchError as e:
        raise HTTPException(status_code=409, detail=e.to_dict())
    except DraftValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())

    errors = validate_draft(draft)
    if errors:
        raise HTTPException(status_code=422, detail={
            "error": "schema_invalid",
            "details": [e.model_dump() for e in errors],
            "draft": draft,
        })

    try:
        record = storage.upsert_draft(draft)
    except StorageError as e:
        log.exception("ingest_storage_failed")
        raise HTTPException(status_code=500, detail=e.to_dict())

    coverage = compute_coverage(draft)
    log.info("ingest_ok", extra=redact_record_info(
        draft["vin"], coverage, "pdf" if pdf is not None else "text", captured_by,
    ))
    return IngestResponse(coverage=coverage, record=record)
