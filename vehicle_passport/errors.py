"""
Taxonomia d'errors del nucli de passaports

"Sense coincidència" (cap VIN, cap odòmetre) NO és un error: els extractors
retornen None / llista buida amb confiança 0. Aquestes excepcions només
representen fallades reals, cadascuna amb un `reason` llegible per màquina.
"""
from enum import Enum
from typing import Optional


class ErrorReason(str, Enum):
    BAD_INPUT = "bad_input"
    SCHEMA_INVALID = "schema_invalid"
    VIN_MISMATCH = "vin_mismatch"
    PRIVATE_KEY_MISSING = "private_key_missing"
    PRIVATE_KEY_INVALID = "private_key_invalid"
    PUBLIC_KEY_INVALID = "public_key_invalid"
    OCR_UNAVAILABLE = "ocr_unavailable"
    OCR_FAILED = "ocr_failed"
    STORAGE_FAILED = "storage_failed"


class PassportError(Exception):
    """Error base amb etiqueta de motiu."""

    reason: ErrorReason = ErrorReason.BAD_INPUT

    def __init__(self, message: str, reason: Optional[ErrorReason] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.reason.value, "message": str(self)}


class BadInputError(PassportError):
    """Entrada malformada (JSON invàlid, buffer buit, imatge no suportada...)."""

    reason = ErrorReason.BAD_INPUT


class DraftValidationError(PassportError):
    """El registre no compleix el contracte d'esquema. Porta TOTES les violacions."""

    reason = ErrorReason.SCHEMA_INVALID

    def __init__(self, errors: list, message: str = "Registre invàlid segons l'esquema"):
        super().__init__(message)
        self.errors = errors

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["details"] = [e.model_dump() for e in self.errors]
        return payload


class VinMismatchError(PassportError):
    """El VIN llegit no coincideix amb l'esperat: mai es fusiona."""

    reason = ErrorReason.VIN_MISMATCH

    def __init__(self, expected_vin: str, parsed_vin: Optional[str]):
        super().__init__(f"VIN esperat {expected_vin}, llegit {parsed_vin or '∅'}")
        self.expected_vin = expected_vin
        self.parsed_vin = parsed_vin

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["expectedVin"] = self.expected_vin
        payload["parsedVin"] = self.parsed_vin
        return payload


class CryptoError(PassportError):
    """Material criptogràfic absent o malformat."""

    reason = ErrorReason.PRIVATE_KEY_INVALID


class OcrServiceError(PassportError):
    """
    Fallada d'un motor OCR extern.

    `retryable` distingeix condicions transitòries (quota, timeout, servei
    caigut) de les permanents (imatge corrupta, credencials).
    """

    reason = ErrorReason.OCR_FAILED

    def __init__(self, message: str, retryable: bool = False, reason: Optional[ErrorReason] = None):
        super().__init__(message, reason)
        self.retryable = retryable

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retryable"] = self.retryable
        return payload


class StorageError(PassportError):
    reason = ErrorReason.STORAGE_FAILED
