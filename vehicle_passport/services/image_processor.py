"""
Servei de pre-processament d'imatges per millorar OCR

Dos perfils fixos:
  odometer      → quadre d'instruments (retall lateral generós, contrast suau)
  licence_disc  → disc de llicència del parabrisa (més resolució, mediana + nitidesa)
"""
import logging
import os
import cv2
import numpy as np
from PIL import Image, ImageOps
from pydantic import BaseModel
from typing import Optional

log = logging.getLogger("passport.preprocess")


class PreprocessProfile(BaseModel):
    max_dimension: int
    inset_x: float                 # fracció retallada a cada costat
    inset_y: float
    contrast: float                # linear: a·x + b
    brightness: float
    gamma: float
    median: int = 0                # mida del filtre (0 = sense)
    sharpen: bool = False


PROFILES: dict[str, PreprocessProfile] = {
    "odometer": PreprocessProfile(
        max_dimension=960, inset_x=0.08, inset_y=0.12,
        contrast=1.05, brightness=-8, gamma=1.05,
    ),
    "licence_disc": PreprocessProfile(
        max_dimension=1400, inset_x=0.1, inset_y=0.1,
        contrast=1.08, brightness=-10, gamma=1.08, median=3, sharpen=True,
    ),
}


class ImageProcessor:
    """Processador d'imatges amb OpenCV i Pillow"""

    @staticmethod
    def load_oriented(image_path: str) -> np.ndarray:
        """
        Carrega la imatge aplicant l'orientació EXIF (les fotos de mòbil
        arriben girades) i la retorna en BGR per a OpenCV
        """
        with Image.open(image_path) as img:
            img = ImageOps.exif_transpose(img).convert("RGB")
            return cv2.cvtColor(np.asarray(img), cv2.COLOR_RGB2BGR)

    @staticmethod
    def inset_crop(image: np.ndarray, inset_x: float, inset_y: float) -> np.ndarray:
        """Retalla un marge proporcional; si el retall no té sentit, retorna l'original"""
        h, w = image.shape[:2]
        dx, dy = round(w * inset_x), round(h * inset_y)
        if w - 2 * dx <= 0 or h - 2 * dy <= 0:
            return image
        return image[dy:h - dy, dx:w - dx]

    @staticmethod
    def resize_max(image: np.ndarray, max_dimension: int) -> np.ndarray:
        """Redueix (mai amplia) perquè el costat llarg no passi de max_dimension"""
        h, w = image.shape[:2]
        longest = max(h, w)
        if longest <= max_dimension:
            return image
        ratio = max_dimension / longest
        return cv2.resize(image, (int(w * ratio), int(h * ratio)), interpolation=cv2.INTER_AREA)

    @staticmethod
    def linear(gray: np.ndarray, a: float, b: float) -> np.ndarray:
        return cv2.convertScaleAbs(gray, alpha=a, beta=b)

    @staticmethod
    def gamma(gray: np.ndarray, gamma: float) -> np.ndarray:
        table = np.array([((i / 255.0) ** (1.0 / gamma)) * 255 for i in range(256)]).astype("uint8")
        return cv2.LUT(gray, table)

    @staticmethod
    def sharpen(image: np.ndarray) -> np.ndarray:
        """
        Millora la nitidesa de la imatge
        """
        kernel = np.array([[0, -1, 0],
                           [-1, 5, -1],
                           [0, -1, 0]])
        return cv2.filter2D(image, -1, kernel)

    @staticmethod
    def apply_profile(image: np.ndarray, profile: PreprocessProfile) -> np.ndarray:
        image = ImageProcessor.inset_crop(image, profile.inset_x, profile.inset_y)
        image = ImageProcessor.resize_max(image, profile.max_dimension)
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        gray = ImageProcessor.linear(gray, profile.contrast, profile.brightness)
        gray = ImageProcessor.gamma(gray, profile.gamma)
        if profile.median:
            gray = cv2.medianBlur(gray, profile.median)
        if profile.sharpen:
            gray = ImageProcessor.sharpen(gray)
        return gray

    @staticmethod
    def process_for_ocr(image_path: str,
                        profile: str = "odometer",
                        output_path: Optional[str] = None) -> str:
        """
        Processa una imatge segons el perfil i retorna el path del resultat

        Raises:
            ValueError: perfil desconegut o imatge il·legible
        """
        if profile not in PROFILES:
            raise ValueError(f"Perfil desconegut: {profile}")

        try:
            image = ImageProcessor.load_oriented(image_path)
        except OSError as e:
            raise ValueError(f"No s'ha pogut carregar la imatge: {image_path}") from e

        if output_path is None:
            base, _ = os.path.splitext(image_path)
            output_path = f"{base}_{profile}.png"

        processed = ImageProcessor.apply_profile(image, PROFILES[profile])
        cv2.imwrite(output_path, processed)
        log.debug("preprocess_done", extra={"profile": profile, "shape": list(processed.shape)})
        return output_path


# Singleton
image_processor = ImageProcessor()
