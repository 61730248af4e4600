"""
Càrrega mandrosa de les claus PEM de segellat

Les claus es llegeixen del disc el primer cop que cal; si no hi eren en
arrencar i apareixen després, es recullen a la següent petició.
"""
import logging
import threading
from pathlib import Path
from typing import Optional
from vehicle_passport.config import settings

log = logging.getLogger("passport.keys")


class KeyStore:
    def __init__(self, private_key_path: str, public_key_path: str):
        self.private_key_path = Path(private_key_path)
        self.public_key_path = Path(public_key_path)
        self._private: Optional[bytes] = None
        self._public: Optional[bytes] = None
        self._lock = threading.Lock()

    @staticmethod
    def _maybe_read(path: Path) -> Optional[bytes]:
        if not path.is_file():
            return None
        data = path.read_bytes()
        return data or None

    def private_key(self) -> Optional[bytes]:
        with self._lock:
            if self._private is None:
                self._private = self._maybe_read(self.private_key_path)
                if self._private is not None:
                    log.info("private_key_loaded", extra={"path": str(self.private_key_path)})
            return self._private

    def public_key(self) -> Optional[bytes]:
        with self._lock:
            if self._public is None:
                self._public = self._maybe_read(self.public_key_path)
                if self._public is not None:
                    log.info("public_key_loaded", extra={"path": str(self.public_key_path)})
            return self._public

    def status(self) -> dict:
        return {
            "hasPrivateKey": self.private_key() is not None,
            "hasPublicKey": self.public_key() is not None,
        }


_key_store: Optional[KeyStore] = None


def get_key_store() -> KeyStore:
    global _key_store
    if _key_store is None:
        _key_store = KeyStore(settings.private_key_path, settings.public_key_path)
    return _key_store
