"""
Emmagatzematge de passaports: un fitxer JSON per VIN

- data/<VIN>.json, carregats tots en iniciar
- escriptura atòmica (fitxer temporal + os.replace)
- fitxers il·legibles es mouen a <VIN>.corrupt.<ts>.json amb un warning
- si el draft canvia, la còpia segellada es descarta (cal tornar a segellar)
"""
import json
import logging
import os
import re
import tempfile
import threading
import time
from datetime import datetime, timezone
from typing import Optional
from vehicle_passport.config import settings
from vehicle_passport.errors import StorageError
from vehicle_passport.models.base_response import PassportRecord
from vehicle_passport.utils.canonical import canonicalize, strip_seal
from vehicle_passport.utils.redact import redact_vin

log = logging.getLogger("passport.storage")


def sanitize_vin(vin: Optional[str]) -> str:
    return re.sub(r"[^A-Z0-9]", "", (vin or "").upper())[:17]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _changed(a: Optional[dict], b: Optional[dict]) -> bool:
    if a is None or b is None:
        return a is not b
    return canonicalize(a) != canonicalize(b)


class PassportStorage:
    """Mapa en memòria persistit com a JSON. Segur entre fils."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self._records: dict[str, PassportRecord] = {}
        self._lock = threading.Lock()
        self._load()

    def _path(self, vin: str) -> str:
        return os.path.join(self.data_dir, f"{sanitize_vin(vin)}.json")

    def _load(self) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        for name in sorted(os.listdir(self.data_dir)):
            if not name.lower().endswith(".json") or ".corrupt." in name:
                continue
            full = os.path.join(self.data_dir, name)
            try:
                with open(full, "r", encoding="utf-8") as fh:
                    record = PassportRecord.model_validate(json.load(fh))
            except (OSError, ValueError) as e:
                bad = re.sub(r"\.json$", f".corrupt.{int(time.time() * 1000)}.json", full, flags=re.IGNORECASE)
                os.replace(full, bad)
                log.warning("storage_corrupt_file", extra={"file": name, "error_type": type(e).__name__})
                continue
            self._records[sanitize_vin(record.vin)] = record
        log.info("storage_loaded", extra={"records": len(self._records), "data_dir": self.data_dir})

    def _persist(self, record: PassportRecord) -> None:
        target = self._path(record.vin)
        try:
            fd, tmp = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=self.data_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record.model_dump(), fh, ensure_ascii=False, indent=2)
                fh.write("\n")
            os.replace(tmp, target)
        except OSError as e:
            raise StorageError(f"No s'ha pogut escriure {target}: {e}") from e

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    def upsert_draft(self, draft: dict) -> PassportRecord:
        vin = sanitize_vin(draft.get("vin"))
        if len(vin) != 17:
            raise StorageError("El draft no porta un VIN vàlid")
        with self._lock:
            current = self._records.get(vin)
            sealed = None
            if current is not None and current.sealed is not None:
                sealed = None if _changed(current.draft, draft) else current.sealed
                if sealed is None:
                    log.info("storage_sealed_dropped", extra={"vin_redacted": redact_vin(vin)})
            record = PassportRecord(vin=vin, draft=draft, sealed=sealed, updated_at=_now_iso())
            self._persist(record)
            self._records[vin] = record
        return record

    def upsert_sealed(self, sealed: dict) -> PassportRecord:
        vin = sanitize_vin(sealed.get("vin"))
        if len(vin) != 17:
            raise StorageError("El registre segellat no porta un VIN vàlid")
        with self._lock:
            current = self._records.get(vin)
            draft = current.draft if current is not None and current.draft is not None else strip_seal(sealed)
            record = PassportRecord(vin=vin, draft=draft, sealed=sealed, updated_at=_now_iso())
            self._persist(record)
            self._records[vin] = record
        return record

    def get(self, vin: str) -> Optional[PassportRecord]:
        return self._records.get(sanitize_vin(vin))

    def list_records(self) -> list[PassportRecord]:
        return sorted(self._records.values(), key=lambda r: r.vin)

    def remove(self, vin: str) -> bool:
        key = sanitize_vin(vin)
        with self._lock:
            existed = self._records.pop(key, None) is not None
            try:
                os.unlink(self._path(key))
            except FileNotFoundError:
                pass
        return existed


_storage: Optional[PassportStorage] = None


def get_storage() -> PassportStorage:
    """Dependència FastAPI (substituïble als tests amb dependency_overrides)."""
    global _storage
    if _storage is None:
        _storage = PassportStorage(settings.data_dir)
    return _storage
