"""
Candidats d'extracció

Es creen a cada crida, es puntuen i es descarten un cop triat el millor
(excepte el top-5 que es retorna per a revisió de l'operador).
"""
from pydantic import BaseModel
from typing import Literal, Optional

VinSource = Literal["keyword", "position", "pattern", "line", "reconstructed"]
OdometerSource = Literal["pattern", "line", "digit_group"]


class VinCandidate(BaseModel):
    value: str                     # VIN normalitzat (majúscules, sense espais)
    raw: str                       # fragment original, per auditoria
    score: float                   # només rànquing relatiu
    confidence: float = 0.0        # confiança OCR 0-100
    source: VinSource
    checksum_valid: bool = False

    @property
    def is_full_length(self) -> bool:
        return len(self.value) == 17


class OdometerCandidate(BaseModel):
    value: int                     # km
    raw: str
    score: float
    confidence: float = 0.0
    source: OdometerSource
    unit: Literal["km", "mi"] = "km"    # unitat llegida (value ja és km)
    anchored: bool = False              # paraula clau d'odòmetre a la mateixa línia
    line_index: Optional[int] = None


class VinExtraction(BaseModel):
    """Resultat d'extracció VIN (None = cap coincidència, no és un error)."""
    vin: Optional[str] = None
    vin_valid: bool = False
    candidates: list[VinCandidate] = []      # top 5, ordenats
    confidence: float = 0.0                  # fracció 0-1
    source: Optional[VinSource] = None


class OdometerExtraction(BaseModel):
    km: Optional[int] = None
    candidates: list[OdometerCandidate] = []  # top 5, ordenats
    confidence: float = 0.0                   # fracció 0-1
    source: Optional[OdometerSource] = None
