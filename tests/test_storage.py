"""
Tests de l'emmagatzematge de passaports (un JSON per VIN)
"""
import os
import pytest
from vehicle_passport.errors import StorageError
from vehicle_passport.services.key_store import KeyStore
from vehicle_passport.services.sealer import seal_passport
from vehicle_passport.services.storage import PassportStorage, sanitize_vin

VIN = "1HGCM82633A004352"


class TestSanitizeVin:
    def test_sanitize(self):
        assert sanitize_vin(" 1hgcm82633a004352/../x ") == VIN


class TestPassportStorage:
    def test_upsert_and_reload(self, storage, draft):
        storage.upsert_draft(draft)
        assert os.path.exists(os.path.join(storage.data_dir, f"{VIN}.json"))

        reloaded = PassportStorage(storage.data_dir)
        record = reloaded.get(VIN)
        assert record.draft == draft
        assert record.sealed is None

    def test_sealed_dropped_when_draft_changes(self, storage, draft, ec_keys):
        storage.upsert_draft(draft)
        storage.upsert_sealed(seal_passport(draft, ec_keys[0], key_id="k"))
        assert storage.get(VIN).sealed is not None

        changed = dict(draft, lot_id="LOT-43")
        record = storage.upsert_draft(changed)
        assert record.sealed is None

    def test_sealed_kept_when_draft_identical(self, storage, draft, ec_keys):
        storage.upsert_draft(draft)
        storage.upsert_sealed(seal_passport(draft, ec_keys[0], key_id="k"))
        record = storage.upsert_draft(dict(draft))
        assert record.sealed is not None

    def test_upsert_sealed_without_draft(self, storage, draft, ec_keys):
        record = storage.upsert_sealed(seal_passport(draft, ec_keys[0], key_id="k"))
        assert "seal" not in record.draft
        assert record.draft["vin"] == VIN

    def test_invalid_vin(self, storage):
        with pytest.raises(StorageError):
            storage.upsert_draft({"vin": "123", "lot_id": "L"})

    def test_corrupt_file_quarantined(self, tmp_path):
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / f"{VIN}.json").write_text("{not json", encoding="utf-8")

        storage = PassportStorage(str(data_dir))
        assert storage.get(VIN) is None
        names = os.listdir(data_dir)
        assert any(".corrupt." in n for n in names)
        assert f"{VIN}.json" not in names

    def test_list_sorted(self, storage, draft):
        storage.upsert_draft(dict(draft, vin="YARKAAC3100018794"))
        storage.upsert_draft(draft)
        assert [r.vin for r in storage.list_records()] == [VIN, "YARKAAC3100018794"]

    def test_remove(self, storage, draft):
        storage.upsert_draft(draft)
        assert storage.remove(VIN) is True
        assert storage.get(VIN) is None
        assert storage.remove(VIN) is False


class TestKeyStore:
    def test_status(self, key_store):
        assert key_store.status() == {"hasPrivateKey": True, "hasPublicKey": True}

    def test_missing_files(self, tmp_path):
        keys = KeyStore(str(tmp_path / "nope.pem"), str(tmp_path / "nope.pub"))
        assert keys.private_key() is None
        assert keys.status() == {"hasPrivateKey": False, "hasPublicKey": False}

    def test_picked_up_later(self, tmp_path, ec_keys):
        path = tmp_path / "late.pem"
        keys = KeyStore(str(path), str(tmp_path / "late.pub"))
        assert keys.private_key() is None
        path.write_bytes(ec_keys[0])
        assert keys.private_key() == ec_keys[0]
