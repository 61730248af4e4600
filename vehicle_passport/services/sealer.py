"""
Segellat i verificació de passaports

seal:   validar → treure seal → canonicalitzar → SHA-256 hex
        → signar els bytes canònics → base64 → seal{hash, sig, key_id, sealed_ts}
verify: treure seal → canonicalitzar → recalcular hash → comparar
        → verificar la signatura amb la clau pública

Algorismes (segons el tipus de clau PEM):
  EC (P-256)  → ECDSA amb SHA-256, signatura DER
  RSA         → PKCS#1 v1.5 amb SHA-256
Tots dos signen els bytes canònics, no el hash.
"""
import base64
import binascii
import copy
import hashlib
import logging
from datetime import datetime, timezone
from typing import Literal, Optional, Union
from pydantic import BaseModel
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from vehicle_passport.errors import CryptoError, DraftValidationError, ErrorReason
from vehicle_passport.models.passport import validate_draft
from vehicle_passport.utils.canonical import canonical_bytes, strip_seal, SEAL_FIELD
from vehicle_passport.utils.redact import redact_vin

log = logging.getLogger("passport.sealer")

PemInput = Union[str, bytes]


class VerificationResult(BaseModel):
    """
    valid=True només si el hash quadra I la signatura s'ha verificat.
    Sense clau pública: status="unverifiable" i valid=False (un hash sol no
    demostra res, qualsevol el pot recalcular).
    """
    valid: bool
    status: Literal["verified", "tampered", "unverifiable"]
    reasons: list[str] = []


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _as_bytes(pem: PemInput) -> bytes:
    return pem.encode("utf-8") if isinstance(pem, str) else pem


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def load_private_key(pem: Optional[PemInput]):
    if not pem:
        raise CryptoError("No hi ha clau privada configurada", ErrorReason.PRIVATE_KEY_MISSING)
    try:
        key = serialization.load_pem_private_key(_as_bytes(pem), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Clau privada il·legible: {e}", ErrorReason.PRIVATE_KEY_INVALID) from e
    if not isinstance(key, (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey)):
        raise CryptoError("Tipus de clau no suportat (EC o RSA)", ErrorReason.PRIVATE_KEY_INVALID)
    return key


def load_public_key(pem: PemInput):
    try:
        key = serialization.load_pem_public_key(_as_bytes(pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Clau pública il·legible: {e}", ErrorReason.PUBLIC_KEY_INVALID) from e
    if not isinstance(key, (ec.EllipticCurvePublicKey, rsa.RSAPublicKey)):
        raise CryptoError("Tipus de clau no suportat (EC o RSA)", ErrorReason.PUBLIC_KEY_INVALID)
    return key


def _sign(private_key, payload: bytes) -> bytes:
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key.sign(payload, ec.ECDSA(hashes.SHA256()))
    return private_key.sign(payload, padding.PKCS1v15(), hashes.SHA256())


def _verify(public_key, signature: bytes, payload: bytes) -> None:
    """Llança InvalidSignature si no quadra."""
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, payload, ec.ECDSA(hashes.SHA256()))
    else:
        public_key.verify(signature, payload, padding.PKCS1v15(), hashes.SHA256())


# ---------------------------------------------------------------------------
# Segellat
# ---------------------------------------------------------------------------

def seal_passport(
    draft: dict,
    private_key_pem: Optional[PemInput],
    key_id: str,
    sealed_at: Optional[str] = None,
) -> dict:
    """
    Retorna una CÒPIA segellada del draft. El draft d'entrada no es modifica.

    Raises:
        DraftValidationError: el draft no compleix l'esquema (totes les violacions)
        CryptoError: clau absent o il·legible
    """
    payload = strip_seal(draft) if isinstance(draft, dict) else draft
    errors = validate_draft(payload)
    if errors:
        log.warning("seal_rejected_invalid_draft", extra={"errors": len(errors)})
        raise DraftValidationError(errors, "No es pot segellar un draft invàlid")

    private_key = load_private_key(private_key_pem)
    body = canonical_bytes(payload)
    signature = _sign(private_key, body)

    sealed = copy.deepcopy(payload)
    sealed[SEAL_FIELD] = {
        "hash": sha256_hex(body),
        "sig": base64.b64encode(signature).decode("ascii"),
        "key_id": key_id,
        "sealed_ts": sealed_at or _now_iso(),
    }
    log.info("passport_sealed", extra={
        "vin_redacted": redact_vin(payload.get("vin")),
        "key_id": key_id,
        "algorithm": "ecdsa-p256-sha256" if isinstance(private_key, ec.EllipticCurvePrivateKey) else "rsa-pkcs1v15-sha256",
    })
    return sealed


# ---------------------------------------------------------------------------
# Verificació
# ---------------------------------------------------------------------------

def verify_sealed(sealed: dict, public_key_pem: Optional[PemInput]) -> VerificationResult:
    """No modifica res i no necessita la clau privada."""
    seal = sealed.get(SEAL_FIELD) if isinstance(sealed, dict) else None
    if not isinstance(seal, dict):
        return VerificationResult(valid=False, status="tampered", reasons=["no_seal_present"])

    reasons: list[str] = []
    body = canonical_bytes(strip_seal(sealed))
    hash_ok = sha256_hex(body) == seal.get("hash")
    if not hash_ok:
        reasons.append("hash_mismatch")

    sig_b64 = seal.get("sig")
    if not sig_b64:
        reasons.append("no_signature_present")
        return VerificationResult(valid=False, status="tampered", reasons=reasons)

    if not public_key_pem:
        reasons.append("no_public_key_configured")
        status = "tampered" if not hash_ok else "unverifiable"
        return VerificationResult(valid=False, status=status, reasons=reasons)

    public_key = load_public_key(public_key_pem)
    try:
        signature = base64.b64decode(sig_b64, validate=True)
    except (binascii.Error, ValueError, TypeError):
        reasons.append("signature_malformed")
        return VerificationResult(valid=False, status="tampered", reasons=reasons)

    try:
        _verify(public_key, signature, body)
    except InvalidSignature:
        reasons.append("signature_invalid")
    except ValueError:
        # DER mal format per a ECDSA
        reasons.append("signature_malformed")

    valid = not reasons
    return VerificationResult(valid=valid, status="verified" if valid else "tampered", reasons=reasons)


# ---------------------------------------------------------------------------
# Claus
# ---------------------------------------------------------------------------

def generate_keypair(algorithm: Literal["ec", "rsa"] = "ec") -> tuple[bytes, bytes]:
    """Parell (privada PKCS#8, pública SubjectPublicKeyInfo) en PEM."""
    if algorithm == "rsa":
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    else:
        private_key = ec.generate_private_key(ec.SECP256R1())
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem
