"""
Tests d'integració de l'API (TestClient amb dependències substituïdes)
"""
import io
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from vehicle_passport.config import settings
from vehicle_passport.main import app
from vehicle_passport.models.ocr import OcrResult
from vehicle_passport.services.google_vision_service import google_vision_service
from vehicle_passport.services.key_store import KeyStore, get_key_store
from vehicle_passport.services.storage import get_storage
from vehicle_passport.services.tesseract_service import tesseract_service

REPORT_VIN = "WDD2040082R088866"
REPORT = (
    "Inspection Date: 29/04/2024\n"
    "VIN WDD2040082R088866\n"
    "Km Reading 238,574 KM\n"
    "FL 1 mm FR 0 mm RL 2 mm RR 2 mm\n"
    "no active error messages"
)


def _jpeg():
    buf = io.BytesIO()
    Image.new("RGB", (32, 32), (10, 10, 10)).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def client(storage, key_store):
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_key_store] = lambda: key_store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def keyless_client(storage, tmp_path):
    keys = KeyStore(str(tmp_path / "none.pem"), str(tmp_path / "none.pub"))
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_key_store] = lambda: keys
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_tesseract(monkeypatch):
    """Tesseract substituït: retorna el text que el test hi posi."""
    state = {"text": ""}
    monkeypatch.setattr(google_vision_service, "client", None)
    monkeypatch.setattr(tesseract_service, "is_available", lambda: True)
    monkeypatch.setattr(
        tesseract_service, "detect_text",
        lambda path, lang=None, psm=6: OcrResult.from_text(state["text"], confidence=90),
    )
    return state


def _ingest(client, **fields):
    return client.post("/ingest/dekra", data={"text": REPORT, "lot_id": "LOT-7", **fields})


# ---------------------------------------------------------------------------
# Estat
# ---------------------------------------------------------------------------

class TestHealth:
    def test_root(self, client):
        assert client.get("/").json() == {"status": "ok"}

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert set(body["services"]) == {"tesseract", "google_vision"}

    def test_api_key_required(self, client, monkeypatch):
        monkeypatch.setattr(settings, "api_key_enabled", True)
        monkeypatch.setattr(settings, "api_key", "secret")
        assert client.get("/passports").status_code == 401
        assert client.get("/passports", headers={"X-API-Key": "secret"}).status_code == 200
        assert client.get("/health").status_code == 200


# ---------------------------------------------------------------------------
# Ingesta
# ---------------------------------------------------------------------------

class TestIngest:
    def test_ingest_text(self, client):
        response = _ingest(client)
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["coverage"] == "7/8"
        draft = body["record"]["draft"]
        assert draft["vin"] == REPORT_VIN
        assert draft["odometer"] == {"km": 238574, "source": "DEKRA"}
        assert draft["dtc"]["status"] == "green"

    def test_persisted(self, client, storage):
        _ingest(client)
        assert storage.get(REPORT_VIN).draft["lot_id"] == "LOT-7"

    def test_no_input(self, client):
        response = client.post("/ingest/dekra", data={"lot_id": "LOT-7"})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "no_pdf_or_text"

    def test_vin_mismatch(self, client, storage):
        response = _ingest(client, expected_vin="1HGCM82633A004352")
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "vin_mismatch"
        assert detail["parsedVin"] == REPORT_VIN
        assert storage.get(REPORT_VIN) is None

    def test_no_vin(self, client):
        response = client.post("/ingest/dekra", data={"text": "Km Reading 120,000 KM"})
        assert response.status_code == 422
        assert response.json()["detail"]["details"][0]["code"] == "VIN_NOT_FOUND"

    def test_bad_pdf(self, client):
        files = {"pdf": ("r.pdf", b"not a pdf", "application/pdf")}
        response = client.post("/ingest/dekra", files=files)
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Passaports
# ---------------------------------------------------------------------------

class TestPassports:
    def test_list_and_get(self, client):
        _ingest(client)
        assert [r["vin"] for r in client.get("/passports").json()] == [REPORT_VIN]
        assert client.get(f"/passports/{REPORT_VIN}").json()["vin"] == REPORT_VIN

    def test_get_missing(self, client):
        assert client.get("/passports/1HGCM82633A004352").status_code == 404

    def test_delete(self, client):
        _ingest(client)
        assert client.delete(f"/passports/{REPORT_VIN}").json() == {"ok": True}
        assert client.get(f"/passports/{REPORT_VIN}").status_code == 404

    def test_tyres_clamped(self, client):
        _ingest(client)
        response = client.put(f"/passports/{REPORT_VIN}/tyres", json={"fl": 30, "rr": 5.5})
        assert response.status_code == 200
        tyres = response.json()["record"]["draft"]["tyres_mm"]
        assert tyres == {"fl": 20.0, "fr": 0.0, "rl": 2.0, "rr": 5.5}

    def test_ev(self, client):
        _ingest(client)
        response = client.post(f"/passports/{REPORT_VIN}/ev")
        ev = response.json()["record"]["draft"]["ev"]
        assert ev["is_electric"] is True
        assert ev["make"] == "Mercedes-Benz"

    def test_ev_without_draft(self, client):
        assert client.post("/passports/1HGCM82633A004352/ev").status_code == 404


# ---------------------------------------------------------------------------
# Segellat i verificació
# ---------------------------------------------------------------------------

class TestSealAndVerify:
    def test_seal_then_verify(self, client):
        _ingest(client)
        response = client.post("/passports/seal", json={"vin": REPORT_VIN, "sealed_at": "2024-05-01T12:00:00.000Z"})
        assert response.status_code == 200
        seal = response.json()["record"]["sealed"]["seal"]
        assert seal["sealed_ts"] == "2024-05-01T12:00:00.000Z"

        body = client.get("/verify", params={"vin": REPORT_VIN}).json()
        assert body["valid"] is True
        assert body["status"] == "verified"
        assert body["reasons"] == []
        assert body["sealed_ts"] == "2024-05-01T12:00:00.000Z"

    def test_draft_change_invalidates_seal(self, client):
        _ingest(client)
        client.post("/passports/seal", json={"vin": REPORT_VIN})
        client.put(f"/passports/{REPORT_VIN}/tyres", json={"fl": 3})
        response = client.get("/verify", params={"vin": REPORT_VIN})
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "sealed_not_found"

    def test_tampered_storage(self, client, storage):
        _ingest(client)
        client.post("/passports/seal", json={"vin": REPORT_VIN})
        record = storage.get(REPORT_VIN)
        record.sealed["odometer"]["km"] = 1000
        body = client.get("/verify", params={"vin": REPORT_VIN}).json()
        assert body["valid"] is False
        assert "hash_mismatch" in body["reasons"]

    def test_seal_vin_required(self, client):
        response = client.post("/passports/seal", json={"vin": " "})
        assert response.status_code == 400

    def test_seal_unknown_draft(self, client):
        response = client.post("/passports/seal", json={"vin": "1HGCM82633A004352"})
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "draft_not_found"

    def test_seal_without_private_key(self, keyless_client):
        _ingest(keyless_client)
        response = keyless_client.post("/passports/seal", json={"vin": REPORT_VIN})
        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "private_key_missing"

    def test_verify_without_public_key(self, client, tmp_path):
        _ingest(client)
        client.post("/passports/seal", json={"vin": REPORT_VIN})
        keys = KeyStore(str(tmp_path / "none.pem"), str(tmp_path / "none.pub"))
        app.dependency_overrides[get_key_store] = lambda: keys
        body = client.get("/verify", params={"vin": REPORT_VIN}).json()
        assert body["valid"] is False
        assert body["status"] == "unverifiable"
        assert body["reasons"] == ["no_public_key_configured"]

    def test_verify_vin_required(self, client):
        assert client.get("/verify").status_code == 400


# ---------------------------------------------------------------------------
# OCR i fotos
# ---------------------------------------------------------------------------

class TestOcrRoutes:
    def test_vin_rejects_non_image(self, client):
        files = {"file": ("a.txt", b"hello", "text/plain")}
        assert client.post("/ocr/vin", files=files).status_code == 400

    def test_vin_rejects_fake_jpeg(self, client):
        files = {"file": ("a.jpg", b"hello", "image/jpeg")}
        assert client.post("/ocr/vin", files=files).status_code == 400

    def test_vin(self, client, fake_tesseract):
        fake_tesseract["text"] = "RSA\nVIN: 1HGCM82633A004352"
        files = {"file": ("disc.jpg", _jpeg(), "image/jpeg")}
        body = client.post("/ocr/vin", files=files, params={"preprocess": "false"}).json()
        assert body["vin"] == "1HGCM82633A004352"
        assert body["vinValid"] is True
        assert body["candidates"][0] == "1HGCM82633A004352"
        assert body["raw"]["ocr_engine"] == "text"

    def test_vin_no_match(self, client, fake_tesseract):
        fake_tesseract["text"] = "RSA MOTOR VEHICLE LICENCE"
        files = {"file": ("disc.jpg", _jpeg(), "image/jpeg")}
        body = client.post("/ocr/vin", files=files, params={"preprocess": "false"}).json()
        assert body["vin"] is None
        assert body["confidence"] == 0.0
        assert body["meta"]["success"] is False

    def test_odometer(self, client, fake_tesseract):
        fake_tesseract["text"] = "ODO 123456 km\n12:45"
        files = {"file": ("dash.jpg", _jpeg(), "image/jpeg")}
        body = client.post("/ocr/odometer", files=files, params={"preprocess": "false"}).json()
        assert body["km"] == 123456
        assert body["unit"] == "km"
        assert body["candidates"][0]["value"] == 123456


class TestPhotos:
    def test_upload(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "uploads_dir", str(tmp_path / "uploads"))
        _ingest(client)
        response = client.post(
            "/photos/upload",
            data={"vin": REPORT_VIN, "role": "dash_odo"},
            files={"file": ("dash.jpg", _jpeg(), "image/jpeg")},
        )
        assert response.status_code == 200
        items = response.json()["record"]["draft"]["images"]["items"]
        assert items[0]["role"] == "dash_odo"

    def test_unknown_role(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "uploads_dir", str(tmp_path / "uploads"))
        response = client.post(
            "/photos/upload",
            data={"vin": REPORT_VIN, "role": "selfie"},
            files={"file": ("dash.jpg", _jpeg(), "image/jpeg")},
        )
        assert response.status_code == 400
