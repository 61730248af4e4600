"""
Vehicle Passport - API FastAPI

Lectura de VIN i odòmetre, ingesta d'informes DEKRA i segellat de passaports.
"""
import time
import logging
import json
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from vehicle_passport.config import settings
from vehicle_passport.errors import ErrorReason, PassportError
from vehicle_passport.routes import ingest, odometer, passports, photos, vin

_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class _JsonFormatter(logging.Formatter):
    """Format JSON per logs estructurats (compatible amb Datadog, Loki, etc.)"""
    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        # Camps extra (mètriques, context)
        for key, val in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = val
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _configure_logging() -> None:
    root = logging.getLogger("passport")
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root.addHandler(handler)
    root.propagate = False


_configure_logging()
log = logging.getLogger("passport.request")

# Crear app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Passaport del vehicle: VIN, odòmetre, informes DEKRA i segellat",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # En producció, especificar origins concrets
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Middleware de latència i logging de peticions
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Registra mètrica de latència per a cada petició."""
    t0 = time.monotonic()
    response = await call_next(request)
    durada_ms = round((time.monotonic() - t0) * 1000)
    log.info(
        "http_request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "durada_ms": durada_ms,
        }
    )
    return response


# Middleware de validació d'API Key
@app.middleware("http")
async def validate_api_key(request: Request, call_next):
    """
    Valida l'API key en cada petició (excepte endpoints públics)
    """
    public_paths = ["/", "/health"]

    if request.url.path in public_paths or not settings.api_key_enabled:
        return await call_next(request)

    if not settings.api_key:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "API key no configurada al servidor"}
        )

    api_key = request.headers.get("X-API-Key")
    if not api_key or api_key != settings.api_key:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "API key invàlida o no proporcionada"},
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return await call_next(request)


_STATUS_BY_REASON = {
    ErrorReason.BAD_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorReason.VIN_MISMATCH: status.HTTP_409_CONFLICT,
    ErrorReason.SCHEMA_INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorReason.OCR_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorReason.OCR_FAILED: status.HTTP_502_BAD_GATEWAY,
}


@app.exception_handler(PassportError)
async def passport_error_handler(request: Request, exc: PassportError):
    """Errors de domini que cap ruta ha traduït."""
    code = _STATUS_BY_REASON.get(exc.reason, status.HTTP_500_INTERNAL_SERVER_ERROR)
    log.warning("unhandled_passport_error", extra={"path": request.url.path, "reason": exc.reason.value})
    return JSONResponse(status_code=code, content={"detail": exc.to_dict()})


# Routes
app.include_router(vin.router, prefix="/ocr", tags=["VIN"])
app.include_router(odometer.router, prefix="/ocr", tags=["Odòmetre"])
app.include_router(ingest.router, prefix="/ingest", tags=["Ingesta"])
app.include_router(passports.router, tags=["Passaports"])
app.include_router(photos.router, prefix="/photos", tags=["Fotos"])
app.mount("/uploads", StaticFiles(directory=settings.uploads_dir, check_dir=False), name="uploads")


@app.get("/")
async def root():
    """Root endpoint - retorna només estat bàsic"""
    return {"status": "ok"}


@app.get("/health")
async def health():
    """Endpoint de health check"""
    from vehicle_passport.services.tesseract_service import tesseract_service
    from vehicle_passport.services.google_vision_service import google_vision_service
    from vehicle_passport.services.key_store import get_key_store

    return {
        "status": "healthy",
        "services": {
            "tesseract": tesseract_service.is_available(),
            "google_vision": google_vision_service.is_available()
        },
        "keys": get_key_store().status(),
    }
