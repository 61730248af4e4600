"""
Fotos del vehicle: desament local i manifest d'imatges del draft

Cada foto es normalitza (orientació EXIF, JPEG q82), se'n calcula el SHA-256
i s'afegeix al manifest `images.items` del draft, substituint la del mateix rol.
"""
import hashlib
import io
import logging
import os
from datetime import datetime, timezone
from PIL import Image, ImageOps, UnidentifiedImageError
from vehicle_passport.errors import BadInputError
from vehicle_passport.models.base_response import PassportRecord
from vehicle_passport.models.passport import IMAGE_ROLES
from vehicle_passport.services.storage import PassportStorage, sanitize_vin
from vehicle_passport.utils.redact import redact_vin

log = logging.getLogger("passport.photos")

JPEG_QUALITY = 82


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def save_photo(vin: str, role: str, content: bytes, uploads_dir: str) -> dict:
    """Desa la foto normalitzada i retorna l'ítem de manifest."""
    if role not in IMAGE_ROLES:
        raise BadInputError(f"Rol d'imatge desconegut: {role}")
    if not content:
        raise BadInputError("Imatge buida")

    try:
        with Image.open(io.BytesIO(content)) as img:
            img = ImageOps.exif_transpose(img).convert("RGB")
            width, height = img.size
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError) as e:
        raise BadInputError(f"Imatge il·legible: {e}") from e

    out = buf.getvalue()
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    fname = f"{vin}_{role}_{stamp}.jpg"
    os.makedirs(uploads_dir, exist_ok=True)
    with open(os.path.join(uploads_dir, fname), "wb") as fh:
        fh.write(out)

    return {
        "role": role,
        "object_key": f"local:{fname}",
        "url": f"/uploads/{fname}",
        "sha256": hashlib.sha256(out).hexdigest(),
        "w": width,
        "h": height,
        "captured_ts": _now_iso(),
    }


def upsert_image_manifest(storage: PassportStorage, vin: str, *items: dict) -> PassportRecord:
    """
    Fusiona ítems per rol dins del draft. Si encara no hi ha draft, en crea
    un de mínim (es poden pujar fotos abans de la ingesta de l'informe).
    """
    vin = sanitize_vin(vin)
    record = storage.get(vin)
    if record is not None and record.draft is not None:
        draft = dict(record.draft)
    else:
        lot_id = (record.sealed or {}).get("lot_id", "N/A") if record is not None else "N/A"
        draft = {"vin": vin, "lot_id": lot_id}

    images = dict(draft.get("images") or {})
    by_role = {item["role"]: item for item in images.get("items", [])}
    for item in items:
        by_role[item["role"]] = item
    images["items"] = list(by_role.values())
    draft["images"] = images

    updated = storage.upsert_draft(draft)
    log.info("photo_manifest_updated", extra={
        "vin_redacted": redact_vin(vin),
        "roles": sorted(by_role),
    })
    return updated
