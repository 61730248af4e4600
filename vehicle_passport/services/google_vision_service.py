"""
Servei de Google Cloud Vision
"""
import json
import logging
from google.api_core import exceptions as google_exceptions
from google.cloud import vision
from google.oauth2 import service_account
from vehicle_passport.config import settings
from vehicle_passport.errors import OcrServiceError, ErrorReason
from vehicle_passport.models.ocr import BoundingBox, OcrLine, OcrResult, OcrWord
from typing import Optional

log = logging.getLogger("passport.ocr.vision")

# Quota, servei caigut, timeout → l'invocant pot reintentar
_RETRYABLE = (
    google_exceptions.ResourceExhausted,
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
)

_BreakType = vision.TextAnnotation.DetectedBreak.BreakType
_LINE_BREAKS = {_BreakType.EOL_SURE_SPACE, _BreakType.LINE_BREAK}


def _normalized_box(vertices, page_w: int, page_h: int) -> Optional[BoundingBox]:
    if not vertices or page_w <= 0 or page_h <= 0:
        return None
    xs = [v.x for v in vertices]
    ys = [v.y for v in vertices]
    clip = lambda v: max(0.0, min(1.0, v))
    return BoundingBox(
        top=clip(min(ys) / page_h),
        left=clip(min(xs) / page_w),
        width=clip((max(xs) - min(xs)) / page_w),
        height=clip((max(ys) - min(ys)) / page_h),
    )


def _union(boxes: list[BoundingBox]) -> Optional[BoundingBox]:
    boxes = [b for b in boxes if b is not None]
    if not boxes:
        return None
    top = min(b.top for b in boxes)
    left = min(b.left for b in boxes)
    bottom = max(b.top + b.height for b in boxes)
    right = max(b.left + b.width for b in boxes)
    return BoundingBox(top=top, left=left, width=min(1.0, right - left), height=min(1.0, bottom - top))


class GoogleVisionService:
    """Wrapper per Google Cloud Vision API"""

    def __init__(self):
        self.client: Optional[vision.ImageAnnotatorClient] = None
        self._initialize_client()

    def _initialize_client(self):
        """Inicialitza el client de Google Vision"""
        if not settings.google_cloud_vision_enabled:
            log.info("vision_disabled")
            return

        try:
            # Credencials des de variable d'entorn JSON
            if settings.google_cloud_credentials_json:
                credentials_dict = json.loads(settings.google_cloud_credentials_json)
                credentials = service_account.Credentials.from_service_account_info(credentials_dict)
                self.client = vision.ImageAnnotatorClient(credentials=credentials)
                log.info("vision_credentials_env")
            else:
                # Usar Application Default Credentials
                self.client = vision.ImageAnnotatorClient()
                log.info("vision_credentials_adc")

            log.info("vision_client_ready", extra={"project": settings.google_cloud_project_id or "N/A"})

        except Exception as e:
            log.warning("vision_init_failed", extra={"error_type": type(e).__name__})
            self.client = None

    def is_available(self) -> bool:
        """Verifica si Google Vision està disponible"""
        return self.client is not None

    def detect_document_text(self, image_path: str) -> OcrResult:
        """
        Detecta text de documents amb paraules i línies (salts de línia detectats)

        Raises:
            OcrServiceError: retryable=True per quota/timeout/servei caigut
        """
        if not self.is_available():
            raise OcrServiceError("Google Vision no està disponible", retryable=False,
                                  reason=ErrorReason.OCR_UNAVAILABLE)

        with open(image_path, "rb") as image_file:
            content = image_file.read()

        try:
            response = self.client.document_text_detection(image=vision.Image(content=content))
        except _RETRYABLE as e:
            raise OcrServiceError(f"Google Vision temporalment no disponible: {e}", retryable=True) from e
        except google_exceptions.GoogleAPICallError as e:
            raise OcrServiceError(f"Google Vision API error: {e}", retryable=False) from e

        if response.error.message:
            raise OcrServiceError(f"Google Vision API error: {response.error.message}", retryable=False)

        annotation = response.full_text_annotation
        if not annotation or not annotation.pages:
            return OcrResult(engine="google_vision")

        words: list[OcrWord] = []
        lines: list[OcrLine] = []
        current: list[OcrWord] = []

        def _close_line():
            if current:
                lines.append(OcrLine(
                    text=" ".join(w.text for w in current),
                    confidence=round(sum(w.confidence for w in current) / len(current), 2),
                    bbox=_union([w.bbox for w in current]),
                ))
                current.clear()

        for page in annotation.pages:
            for block in page.blocks:
                for paragraph in block.paragraphs:
                    for v_word in paragraph.words:
                        text = "".join(s.text for s in v_word.symbols)
                        if not text:
                            continue
                        word = OcrWord(
                            text=text,
                            confidence=round(max(0.0, min(1.0, v_word.confidence)) * 100, 2),
                            bbox=_normalized_box(v_word.bounding_box.vertices, page.width, page.height),
                        )
                        words.append(word)
                        current.append(word)
                        last = v_word.symbols[-1]
                        if last.property.detected_break.type_ in _LINE_BREAKS:
                            _close_line()
                    _close_line()

        confidence = sum(w.confidence for w in words) / len(words) if words else 0.0
        return OcrResult(
            text=annotation.text,
            confidence=round(confidence, 2),
            lines=lines,
            words=words,
            engine="google_vision",
        )


# Singleton
google_vision_service = GoogleVisionService()
