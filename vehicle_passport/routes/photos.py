"""
Ruta de pujada de fotos del vehicle
"""
import logging
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from vehicle_passport.config import settings
from vehicle_passport.errors import BadInputError, StorageError
from vehicle_passport.models.base_response import RecordResponse
from vehicle_passport.routes.ocr_common import read_image_upload
from vehicle_passport.services.photo_service import save_photo, upsert_image_manifest
from vehicle_passport.services.storage import PassportStorage, get_storage, sanitize_vin

log = logging.getLogger("passport.photos")

router = APIRouter()


@router.post("/upload", response_model=RecordResponse)
async def upload_photo(
    vin: str = Form(...),
    role: str = Form(...),
    file: UploadFile = File(...),
    storage: PassportStorage = Depends(get_storage),
):
    vin = sanitize_vin(vin)
    if len(vin) != 17:
        raise HTTPException(status_code=400, detail={"error": "vin_required"})

    content = await read_image_upload(file)
    try:
        item = await run_in_threadpool(save_photo, vin, role, content, settings.uploads_dir)
        record = upsert_image_manifest(storage, vin, item)
    except BadInputError as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    except StorageError as e:
        log.exception("photo_storage_failed")
        raise HTTPException(status_code=500, detail=e.to_dict())
    return RecordResponse(record=record)
