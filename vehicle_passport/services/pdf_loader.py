"""
PDF → text per a la ingesta d'informes DEKRA

Només PDFs amb capa de text (pdfplumber). Si el text extret és massa curt
respecte a la mida del fitxer, es marca com a probable escanejat perquè
l'invocant decideixi (saltar-lo o passar-lo per OCR).
"""
import io
import logging
import os
import re
from typing import Union
import pdfplumber
from pydantic import BaseModel
from vehicle_passport.errors import BadInputError

log = logging.getLogger("passport.pdf")

MIN_TEXT_CHARS = 200
MIN_CHARS_PER_KB = 0.5


class LoadedPdf(BaseModel):
    text: str
    pages: int
    bytes: int
    source: str
    is_likely_scanned: bool


def normalize_whitespace(text: str) -> str:
    """Col·lapsa espais/tabuladors, retalla cada línia i limita les línies buides seguides."""
    if not text:
        return ""
    collapsed = re.sub(r"[^\S\r\n]+", " ", text)
    lines = [l.strip() for l in re.split(r"\r?\n", collapsed)]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def is_likely_scanned(text: str, size_bytes: int) -> bool:
    chars_per_kb = len(text) / max(1.0, size_bytes / 1024)
    return len(text) < MIN_TEXT_CHARS or chars_per_kb < MIN_CHARS_PER_KB


def load_pdf(source: Union[str, bytes], name: str = "<upload>") -> LoadedPdf:
    """
    Accepta un path o els bytes del PDF.

    Raises:
        BadInputError: buffer buit o PDF il·legible
    """
    if isinstance(source, bytes):
        data = source
    else:
        name = source
        with open(source, "rb") as fh:
            data = fh.read()
    if not data:
        raise BadInputError("PDF buit")
    if not data.startswith(b"%PDF"):
        raise BadInputError("El fitxer no és un PDF")

    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = len(pdf.pages)
            raw = "\n".join(page.extract_text() or "" for page in pdf.pages)
    except Exception as e:
        raise BadInputError(f"PDF il·legible: {e}") from e

    text = normalize_whitespace(raw)
    loaded = LoadedPdf(
        text=text,
        pages=pages,
        bytes=len(data),
        source=name,
        is_likely_scanned=is_likely_scanned(text, len(data)),
    )
    log.info("pdf_loaded", extra={
        "pages": pages,
        "chars": len(text),
        "bytes": len(data),
        "likely_scanned": loaded.is_likely_scanned,
    })
    return loaded


def list_pdfs(directory: str, recursive: bool = True) -> list[str]:
    out = []
    for root, dirs, files in os.walk(directory):
        out.extend(os.path.join(root, f) for f in files if f.lower().endswith(".pdf"))
        if not recursive:
            break
    return sorted(out)
