"""
Detecció heurística de vehicle elèctric a partir del WMI del VIN

Un WMI coincident només suggereix EV: els fabricants comparteixen WMI entre
models elèctrics i de combustió, per això la confiança és conservadora.
"""
from vehicle_passport.models.passport import EvInfo

# WMI → (marca, compatible Smartcar, bateria estimada kWh, nota)
EV_CAPABILITIES: dict[str, tuple[str, bool, float, str | None]] = {
    "WDD": ("Mercedes-Benz", True, 80, None),    # famílies EQ
    "WBA": ("BMW", True, 85, None),              # i4 / iX
    "WVW": ("Volkswagen", True, 77, None),       # ID.3 / ID.4 (segons regió)
    "LGX": ("BYD", False, 60, "Verify WMI for ZA imports"),
}

MATCH_CONFIDENCE = 0.7


def detect_ev_from_vin(vin: str) -> EvInfo:
    vin = (vin or "").strip().upper()
    if len(vin) != 17:
        return EvInfo(notes="invalid_vin_length")

    match = EV_CAPABILITIES.get(vin[:3])
    if match is None:
        return EvInfo()

    make, smartcar, battery, note = match
    return EvInfo(
        is_electric=True,
        make=make,
        smartcar_compatible=smartcar,
        battery_estimate_kwh=battery,
        confidence=MATCH_CONFIDENCE,
        notes=note,
    )
