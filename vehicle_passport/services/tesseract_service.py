"""
Servei de Tesseract OCR
"""
import logging
import pytesseract
from PIL import Image
from vehicle_passport.config import settings
from vehicle_passport.errors import OcrServiceError, ErrorReason
from vehicle_passport.models.ocr import BoundingBox, OcrLine, OcrResult, OcrWord
from typing import Optional

log = logging.getLogger("passport.ocr.tesseract")


def _bbox(left: int, top: int, width: int, height: int, img_w: int, img_h: int) -> Optional[BoundingBox]:
    if img_w <= 0 or img_h <= 0:
        return None
    clip = lambda v: max(0.0, min(1.0, v))
    return BoundingBox(
        top=clip(top / img_h),
        left=clip(left / img_w),
        width=clip(width / img_w),
        height=clip(height / img_h),
    )


class TesseractService:
    """Wrapper per Tesseract OCR"""

    def __init__(self):
        self.lang = settings.tesseract_lang
        self._check_availability()

    def _check_availability(self):
        """Verifica que Tesseract està instal·lat"""
        try:
            version = pytesseract.get_tesseract_version()
            log.info("tesseract_available", extra={"version": str(version)})
        except Exception as e:
            log.warning("tesseract_unavailable", extra={"error": str(e)})

    def is_available(self) -> bool:
        """Verifica si Tesseract està disponible"""
        if not settings.tesseract_enabled:
            return False

        try:
            pytesseract.get_tesseract_version()
            return True
        except Exception:
            return False

    def detect_text(self, image_path: str, lang: Optional[str] = None, psm: int = 6) -> OcrResult:
        """
        Detecta text, paraules i línies amb caixes normalitzades

        Args:
            image_path: Path a la imatge
            lang: Idiomes (per defecte usa config)
            psm: Page segmentation mode. 6 = bloc uniforme (quadre),
                 11 = text dispers (disc de llicència)

        Returns:
            OcrResult amb engine="tesseract"
        """
        if not self.is_available():
            raise OcrServiceError("Tesseract no està disponible", retryable=False,
                                  reason=ErrorReason.OCR_UNAVAILABLE)

        lang = lang or self.lang
        config = f"--psm {psm}"

        try:
            with Image.open(image_path) as image:
                img_w, img_h = image.size
                data = pytesseract.image_to_data(image, lang=lang, config=config,
                                                 output_type=pytesseract.Output.DICT)
        except (OSError, pytesseract.TesseractError) as e:
            raise OcrServiceError(f"Error en Tesseract OCR: {e}", retryable=False) from e

        words: list[OcrWord] = []
        grouped: dict[tuple, list[tuple[OcrWord, tuple]]] = {}
        for i, text in enumerate(data["text"]):
            text = (text or "").strip()
            conf = float(data["conf"][i])
            if not text or conf < 0:
                continue
            box = (data["left"][i], data["top"][i], data["width"][i], data["height"][i])
            word = OcrWord(
                text=text,
                confidence=max(0.0, min(100.0, conf)),
                bbox=_bbox(*box, img_w, img_h),
            )
            words.append(word)
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            grouped.setdefault(key, []).append((word, box))

        lines: list[OcrLine] = []
        for members in grouped.values():
            left = min(b[0] for _, b in members)
            top = min(b[1] for _, b in members)
            right = max(b[0] + b[2] for _, b in members)
            bottom = max(b[1] + b[3] for _, b in members)
            lines.append(OcrLine(
                text=" ".join(w.text for w, _ in members),
                confidence=round(sum(w.confidence for w, _ in members) / len(members), 2),
                bbox=_bbox(left, top, right - left, bottom - top, img_w, img_h),
            ))

        avg_confidence = sum(w.confidence for w in words) / len(words) if words else 0.0
        return OcrResult(
            text="\n".join(l.text for l in lines),
            confidence=round(avg_confidence, 2),
            lines=lines,
            words=words,
            engine="tesseract",
        )


# Singleton
tesseract_service = TesseractService()
