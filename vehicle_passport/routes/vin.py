"""
Ruta per llegir el VIN d'una foto del disc de llicència
"""
import asyncio
import logging
from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from vehicle_passport.errors import OcrServiceError
from vehicle_passport.models.base_response import MetaInfo, RawOCR, VinExtractionResponse
from vehicle_passport.parsers import vin_parser
from vehicle_passport.routes.ocr_common import (
    maybe_preprocess,
    ocr_error_to_http,
    ocr_with_fallback,
    read_image_upload,
    unlink_quietly,
    write_temp,
)
from vehicle_passport.services.metrics import LoggingMetricsSink
from vehicle_passport.utils.redact import redact_vin

log = logging.getLogger("passport.vin")

# Text dispers: el disc és circular i les línies no són uniformes
_PSM_SPARSE = 11

router = APIRouter()
_metrics = LoggingMetricsSink()


@router.post("/vin", response_model=VinExtractionResponse)
async def extract_vin(
    file: UploadFile = File(...),
    preprocess: bool = Query(default=True, description="Pre-processar imatge (perfil licence_disc)"),
    document: vin_parser.DocumentType = Query(default="licence_disc", description="licence_disc o generic"),
):
    """
    Llegeix el VIN d'una foto. Sense coincidència NO és error: vin=null, confidence=0.
    """
    content = await read_image_upload(file)
    temp_path = write_temp(content)
    del content
    ocr_input_path: str | None = None

    try:
        ocr_input_path = maybe_preprocess(temp_path, "licence_disc", preprocess)

        def _needs_fallback(ocr):
            result = vin_parser.extract_vin_from_ocr(ocr, document)
            return vin_parser.should_fallback_to_vision(result, ocr.confidence)

        ocr, durada_ms = await ocr_with_fallback(ocr_input_path, _PSM_SPARSE, _needs_fallback)
        result = vin_parser.extract_vin_from_ocr(ocr, document, _metrics)

        log.info("vin_extracted", extra={
            "vin_redacted": redact_vin(result.vin),
            "vin_valid": result.vin_valid,
            "confidence": result.confidence,
            "engine": ocr.engine,
        })
        message = "VIN llegit." if result.vin else "Cap VIN trobat."
        return VinExtractionResponse(
            vin=result.vin,
            vin_valid=result.vin_valid,
            candidates=[c.value for c in result.candidates],
            confidence=result.confidence,
            raw=RawOCR(ocr_engine=ocr.engine, ocr_confidence=round(ocr.confidence, 1), duration_ms=durada_ms),
            meta=MetaInfo(success=result.vin is not None, message=f"[{ocr.engine}] {message}"),
        )

    except HTTPException:
        raise

    except OcrServiceError as e:
        raise ocr_error_to_http(e)

    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Timeout processant la imatge.")

    except Exception:
        log.exception("vin_unexpected_error")
        raise HTTPException(status_code=500, detail="Error intern processant la imatge.")

    finally:
        unlink_quietly(temp_path)
        if ocr_input_path != temp_path:
            unlink_quietly(ocr_input_path)
