"""
Formes de sortida dels motors OCR (Tesseract / Google Vision)

Tots dos motors es normalitzen a aquest contracte abans d'arribar als parsers:
línies i paraules amb confiança 0-100 i caixa opcional normalitzada 0-1.
"""
from pydantic import BaseModel, Field
from typing import Literal, Optional, Union


class BoundingBox(BaseModel):
    """Rectangle normalitzat respecte a la mida de la imatge (0-1)."""
    top: float = Field(ge=0.0, le=1.0)
    left: float = Field(ge=0.0, le=1.0)
    width: float = Field(ge=0.0, le=1.0)
    height: float = Field(ge=0.0, le=1.0)

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2

    @property
    def center_y(self) -> float:
        return self.top + self.height / 2


class OcrLine(BaseModel):
    kind: Literal["line"] = "line"
    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    bbox: Optional[BoundingBox] = None


class OcrWord(BaseModel):
    kind: Literal["word"] = "word"
    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    bbox: Optional[BoundingBox] = None


OcrBlock = Union[OcrLine, OcrWord]


class OcrResult(BaseModel):
    """Resultat complet d'una passada OCR."""
    text: str = ""
    confidence: float = 0.0                           # mitjana 0-100
    lines: list[OcrLine] = []
    words: list[OcrWord] = []
    engine: Literal["tesseract", "google_vision", "text"] = "text"

    @classmethod
    def from_text(cls, text: str, confidence: float = 100.0) -> "OcrResult":
        """Construeix un resultat sense geometria a partir de text pla (PDF, tests)."""
        lines = [
            OcrLine(text=l.strip(), confidence=confidence)
            for l in text.split("\n")
            if l.strip()
        ]
        return cls(text=text, confidence=confidence, lines=lines, engine="text")
