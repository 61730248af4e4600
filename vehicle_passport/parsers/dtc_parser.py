"""
Classificador de codis de diagnosi (DTC)

green < amber < red en risc; "n/a" vol dir "tema no tractat" i mai s'ha de
confondre amb green ("secció present i buida").
"""
import re
from vehicle_passport.models.passport import DtcCode, DtcInfo

# Frases de negació explícita: curtcircuiten l'extracció
_NEGATION_RE = re.compile(
    r"\bno\s+(?:active\s+|stored\s+|current\s+|pending\s+)?"
    r"(?:fault(?:\s+codes?)?|dtcs?|(?:diagnostic\s+)?trouble\s+codes?|error\s+(?:messages?|codes?)|errors?)"
    r"(?:\s+(?:found|present|detected|stored|recorded))?\b",
    re.IGNORECASE,
)
_CODE_RE = re.compile(r"(?<![A-Z0-9])([PCBU][0-9A-F]{4})(?![A-Z0-9])")
_HEADER_RE = re.compile(r"DIAGNOSTIC\s+TROUBLE\s+CODES|\bDTC(?:\(S\)|S)?\b|FAULT\s+CODES")
_ACTIVE_RE = re.compile(r"\bMIL\s+ON\b|\bCURRENT\b|\bACTIVE\b|\bPRESENT\b|\bPERMANENT\b|\bSTORED\b")


def extract_codes(text: str) -> list[str]:
    """Codes [PCBU][0-9A-F]{4} distints, en ordre d'aparició."""
    seen: list[str] = []
    for code in _CODE_RE.findall((text or "").upper()):
        if code not in seen:
            seen.append(code)
    return seen


def classify_dtc(text: str) -> DtcInfo:
    """
    1. negació explícita → green, []
    2. extreure codis
    3. sense codis: capçalera DTC → green, si no → n/a
    4. amb codis: MIL ON / CURRENT / ACTIVE / PRESENT / PERMANENT / STORED → red, si no → amber
    """
    text = text or ""
    if _NEGATION_RE.search(text):
        return DtcInfo(status="green", codes=[])

    upper = text.upper()
    codes = extract_codes(upper)
    if not codes:
        return DtcInfo(status="green" if _HEADER_RE.search(upper) else "n/a", codes=[])

    status = "red" if _ACTIVE_RE.search(upper) else "amber"
    return DtcInfo(status=status, codes=[DtcCode(code=c) for c in codes])
