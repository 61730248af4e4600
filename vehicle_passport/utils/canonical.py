"""
JSON canònic per a hash i signatura

Mateix valor lògic → mateixos bytes:
  - claus d'objecte ordenades per punt de codi (= ordre de bytes UTF-8)
  - arrays en l'ordre original
  - floats arrodonits (half-up) a 3 decimals; floats enters → enters
  - strings retallats (trim); les claus NO es toquen
  - separadors compactes, UTF-8 literal (sense \\uXXXX)
"""
import json
import math
from typing import Any
from vehicle_passport.errors import BadInputError

SEAL_FIELD = "seal"
_NO_FRACTION = 2.0 ** 53


def _round_number(value: float) -> Any:
    if not math.isfinite(value):
        raise BadInputError(f"Número no finit al registre: {value!r}")
    if abs(value) >= _NO_FRACTION:
        # A partir de 2**53 un float ja no porta decimals
        return int(value)
    rounded = math.floor(value * 1000 + 0.5) / 1000
    if rounded == int(rounded):
        return int(rounded)
    return rounded


def normalize(value: Any) -> Any:
    """Normalitza recursivament un valor JSON-like (sense serialitzar)."""
    if isinstance(value, dict):
        return {str(k): normalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    if isinstance(value, str):
        return value.strip()
    # bool abans que int (bool és subclasse d'int)
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return _round_number(value)
    raise BadInputError(f"Tipus no serialitzable: {type(value).__name__}")


def canonicalize(value: Any) -> str:
    return json.dumps(normalize(value), separators=(",", ":"), ensure_ascii=False, sort_keys=False)


def canonical_bytes(value: Any) -> bytes:
    return canonicalize(value).encode("utf-8")


def strip_seal(record: dict) -> dict:
    """Còpia superficial del registre sense el bloc `seal`."""
    return {k: v for k, v in record.items() if k != SEAL_FIELD}
