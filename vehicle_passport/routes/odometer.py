"""
Ruta per llegir l'odòmetre d'una foto del quadre d'instruments
"""
import asyncio
import logging
from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from vehicle_passport.errors import OcrServiceError
from vehicle_passport.models.base_response import (
    MetaInfo,
    OdometerCandidateOut,
    OdometerExtractionResponse,
    RawOCR,
)
from vehicle_passport.parsers import odometer_parser
from vehicle_passport.routes.ocr_common import (
    maybe_preprocess,
    ocr_error_to_http,
    ocr_with_fallback,
    read_image_upload,
    unlink_quietly,
    write_temp,
)
from vehicle_passport.services.metrics import LoggingMetricsSink

log = logging.getLogger("passport.odometer")

_PSM_BLOCK = 6

router = APIRouter()
_metrics = LoggingMetricsSink()


@router.post("/odometer", response_model=OdometerExtractionResponse)
async def extract_odometer(
    file: UploadFile = File(...),
    preprocess: bool = Query(default=True, description="Pre-processar imatge (perfil odometer)"),
):
    """
    Llegeix el quilometratge. Sense lectura plausible: km=null, confidence=0.
    """
    content = await read_image_upload(file)
    temp_path = write_temp(content)
    del content
    ocr_input_path: str | None = None

    try:
        ocr_input_path = maybe_preprocess(temp_path, "odometer", preprocess)

        def _needs_fallback(ocr):
            return odometer_parser.should_fallback_to_vision(odometer_parser.extract_odometer(ocr), ocr.confidence)

        ocr, durada_ms = await ocr_with_fallback(ocr_input_path, _PSM_BLOCK, _needs_fallback)
        result = odometer_parser.extract_odometer(ocr, _metrics)

        log.info("odometer_extracted", extra={
            "km": result.km,
            "source": result.source,
            "confidence": result.confidence,
            "engine": ocr.engine,
        })
        message = "Odòmetre llegit." if result.km is not None else "Cap lectura plausible."
        return OdometerExtractionResponse(
            km=result.km,
            candidates=[
                OdometerCandidateOut(value=c.value, raw=c.raw, score=c.score, source=c.source)
                for c in result.candidates
            ],
            confidence=result.confidence,
            raw=RawOCR(ocr_engine=ocr.engine, ocr_confidence=round(ocr.confidence, 1), duration_ms=durada_ms),
            meta=MetaInfo(success=result.km is not None, message=f"[{ocr.engine}] {message}"),
        )

    except HTTPException:
        raise

    except OcrServiceError as e:
        raise ocr_error_to_http(e)

    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Timeout processant la imatge.")

    except Exception:
        log.exception("odometer_unexpected_error")
        raise HTTPException(status_code=500, detail="Error intern processant la imatge.")

    finally:
        unlink_quietly(temp_path)
        if ocr_input_path != temp_path:
            unlink_quietly(ocr_input_path)
