"""
Peces comunes de les rutes OCR (VIN i odòmetre)

Flux: validar pujada → fitxer temporal → pre-processament opcional
      → Tesseract (gratuït) → Google Vision si el resultat no convenç
"""
import asyncio
import logging
import os
import tempfile
import time
from typing import Callable, Optional
from fastapi import HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from vehicle_passport.config import settings
from vehicle_passport.errors import OcrServiceError
from vehicle_passport.models.ocr import OcrResult
from vehicle_passport.services.google_vision_service import google_vision_service
from vehicle_passport.services.image_processor import image_processor
from vehicle_passport.services.tesseract_service import tesseract_service

log = logging.getLogger("passport.ocr")

_tesseract_semaphore = asyncio.Semaphore(2)

VALID_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}

_MAGIC = {
    b"\xff\xd8\xff": "image/jpeg",
    b"\x89PNG":      "image/png",
    b"RIFF":         "image/webp",
}


def detect_image_type(content: bytes) -> str | None:
    for magic, mime in _MAGIC.items():
        if content[: len(magic)] == magic:
            return mime
    return None


async def read_image_upload(file: UploadFile) -> bytes:
    """Comprova MIME, mida i magic bytes. Llança HTTPException 400/413."""
    if file.content_type not in VALID_MIME_TYPES:
        raise HTTPException(status_code=400, detail="Format no suportat. Acceptem JPG, PNG o WEBP.")

    content = await file.read()
    max_size = settings.max_file_size_mb * 1024 * 1024

    if not content:
        raise HTTPException(status_code=400, detail="Imatge buida.")
    if len(content) > max_size:
        raise HTTPException(status_code=413, detail=f"Imatge massa gran. Màxim {settings.max_file_size_mb}MB.")
    if detect_image_type(content) is None:
        raise HTTPException(status_code=400, detail="El fitxer no és una imatge vàlida.")
    return content


def write_temp(content: bytes, suffix: str = ".jpg") -> str:
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp.write(content)
        return tmp.name


def unlink_quietly(path: str | None) -> None:
    if path and os.path.exists(path):
        try:
            os.unlink(path)
        except OSError:
            log.warning("temp_unlink_failed")


def maybe_preprocess(path: str, profile: str, enabled: bool) -> str:
    if not enabled:
        return path
    try:
        return image_processor.process_for_ocr(path, profile=profile)
    except ValueError:
        log.warning("preprocess_failed", extra={"profile": profile})
        return path


async def ocr_with_fallback(
    path: str,
    psm: int,
    needs_fallback: Callable[[OcrResult], tuple[bool, str]],
) -> tuple[OcrResult, int]:
    """
    Retorna (resultat OCR, durada_ms).

    needs_fallback decideix si el resultat de Tesseract és acceptable.
    Si Tesseract no convenç i Vision no hi és, es retorna igualment el de Tesseract.
    """
    timeout = settings.ocr_timeout_seconds
    tess: Optional[OcrResult] = None

    # --- INTENT 1: Tesseract (gratuït) ---
    if tesseract_service.is_available():
        try:
            t0 = time.monotonic()
            async with _tesseract_semaphore:
                tess = await asyncio.wait_for(
                    run_in_threadpool(tesseract_service.detect_text, path, None, psm),
                    timeout=timeout,
                )
            tess_ms = round((time.monotonic() - t0) * 1000)
            cal_fallback, motiu = needs_fallback(tess)
            if not cal_fallback:
                log.info("ocr_tesseract_ok", extra={"durada_ms": tess_ms, "confidence": tess.confidence})
                return tess, tess_ms
            log.info("ocr_tesseract_fallback", extra={
                "motiu": motiu,
                "durada_ms": tess_ms,
                "confidence": tess.confidence,
            })
        except asyncio.TimeoutError:
            log.warning("ocr_tesseract_timeout")
        except OcrServiceError as e:
            log.warning("ocr_tesseract_error", extra={"error": str(e)})

    # --- INTENT 2: Google Vision (fallback) ---
    if not google_vision_service.is_available():
        if tess is not None:
            return tess, 0
        raise HTTPException(status_code=503, detail="Cap motor OCR disponible")

    t0 = time.monotonic()
    vision = await asyncio.wait_for(
        run_in_threadpool(google_vision_service.detect_document_text, path),
        timeout=timeout,
    )
    vision_ms = round((time.monotonic() - t0) * 1000)
    log.info("ocr_vision_used", extra={"durada_ms": vision_ms, "confidence": vision.confidence})
    return vision, vision_ms


def ocr_error_to_http(e: OcrServiceError) -> HTTPException:
    """Transitori → 503 (es pot reintentar); permanent → 502."""
    if e.retryable:
        return HTTPException(status_code=503, detail=e.to_dict(), headers={"Retry-After": "5"})
    return HTTPException(status_code=502, detail=e.to_dict())
