"""
Configuració de l'Agent de Passaport de Vehicle
"""
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from typing import Optional


class VinTuning(BaseModel):
    """Pesos i llindars del motor de candidats VIN"""

    # Puntuació base per estratègia (keyword > position > pattern > line > reconstructed)
    score_keyword: float = 100.0
    score_position: float = 80.0
    score_pattern: float = 60.0
    score_line: float = 50.0
    score_reconstructed: float = 30.0

    # Bonus posicional (disc de llicència)
    position_band_top: float = 0.4
    position_band_bottom: float = 0.8
    position_optimal_x: float = 0.5
    position_optimal_y: float = 0.65
    position_bonus_max: float = 20.0
    position_decay_distance: float = 0.5

    # Pes de la confiança OCR dins la puntuació (0-100 → 0-10)
    ocr_confidence_weight: float = 0.1

    # Un VIN real sempre porta dígits (números de sèrie)
    min_digits: int = 3
    partial_min_length: int = 11

    # Confiança final: 70% OCR + 30% puntuació
    confidence_ocr_weight: float = 0.7
    confidence_score_weight: float = 0.3
    fallback_confidence_factor: float = 0.5

    # Decisió Tesseract → Vision
    tesseract_min_confidence: float = 50.0


class OdometerTuning(BaseModel):
    """Pesos i llindars del motor de candidats d'odòmetre"""

    min_km: int = 1000
    max_km: int = 2_000_000
    min_line_confidence: float = 60.0

    digit_count_bonus: float = 20.0
    keyword_same_line_bonus: float = 30.0
    keyword_adjacent_line_bonus: float = 15.0
    thousand_separator_bonus: float = 5.0
    trip_penalty: float = 40.0
    clock_penalty: float = 100.0

    # Agrupació de dígits: paraules a la mateixa fila si |Δy| ≤ tolerància × alçada
    row_tolerance: float = 0.5

    miles_to_km: float = 1.60934

    confidence_ocr_weight: float = 0.7
    confidence_score_weight: float = 0.3
    score_normalizer: float = 100.0

    tesseract_min_confidence: float = 50.0


class Settings(BaseSettings):
    """Configuració de l'aplicació"""

    # App
    app_name: str = "Vehicle Passport Agent"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Google Cloud Vision
    google_cloud_vision_enabled: bool = True
    google_cloud_credentials_json: Optional[str] = None
    google_cloud_project_id: Optional[str] = None

    # Tesseract
    tesseract_enabled: bool = True
    tesseract_lang: str = "eng"

    # API
    api_key_enabled: bool = False
    api_key: Optional[str] = None

    # Limits
    max_file_size_mb: int = 10
    max_pdf_size_mb: int = 20
    ocr_timeout_seconds: int = 30

    # Emmagatzematge
    data_dir: str = "data"
    uploads_dir: str = "uploads"

    # Segellat
    private_key_path: str = "seal_private.pem"
    public_key_path: str = "seal_public.pem"
    seal_key_id: str = "local-ec-p256-v1"

    # Els informes DEKRA porten l'hora local de Sud-àfrica (SAST, UTC+2)
    report_utc_offset_hours: int = 2

    # Heurístiques
    vin: VinTuning = VinTuning()
    odometer: OdometerTuning = OdometerTuning()

    class Config:
        env_file = ".env"
        case_sensitive = False
        env_nested_delimiter = "__"


# Singleton de configuració
settings = Settings()
