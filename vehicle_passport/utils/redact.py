"""
Utilitats de redacció per a logs

Un VIN identifica un vehicle (i indirectament el seu propietari): mai en clar
als logs de producció.
"""
from typing import Optional


def redact_vin(vin: Optional[str]) -> str:
    """
    Manté el WMI (fabricant) i els 2 últims dígits.
    "1HGCM82633A004352" → "1HG************52"
    """
    if not vin or len(vin) < 6:
        return "***"
    return vin[:3] + "*" * (len(vin) - 5) + vin[-2:]


def redact_name(name: Optional[str]) -> str:
    """
    Redacta un nom (captured_by, operador) per a logs.
    "THANDO" → "T*****"
    """
    if not name:
        return "***"
    return name[0] + "*" * (len(name) - 1)


def redact_record_info(
    vin: Optional[str],
    coverage: Optional[str],
    engine: Optional[str],
    captured_by: Optional[str] = None,
) -> dict:
    """
    Retorna un dict segur per a logging: dades tècniques sense identificadors.
    """
    return {
        "vin_redacted": redact_vin(vin),
        "coverage": coverage,
        "engine": engine,
        "captured_by_redacted": redact_name(captured_by),
    }
