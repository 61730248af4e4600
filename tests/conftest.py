"""
Fixtures compartides: claus de prova, emmagatzematge temporal i textos d'informe
"""
import pytest
from vehicle_passport.services.key_store import KeyStore
from vehicle_passport.services.sealer import generate_keypair
from vehicle_passport.services.storage import PassportStorage

VALID_VIN = "1HGCM82633A004352"

DEKRA_TEXT = (
    "Inspection Date: 29/04/2024\n"
    "VIN WDD2040082R088866\n"
    "Km Reading 238,574 KM\n"
    "FL 1 mm FR 0 mm RL 2 mm RR 2 mm\n"
    "no active error messages"
)


@pytest.fixture(scope="session")
def ec_keys():
    return generate_keypair("ec")


@pytest.fixture(scope="session")
def rsa_keys():
    return generate_keypair("rsa")


@pytest.fixture
def draft():
    return {
        "vin": VALID_VIN,
        "lot_id": "LOT-42",
        "dekra": {"inspection_ts": "2024-04-29T00:00:00.000+02:00", "site": "DEKRA Randburg"},
        "odometer": {"km": 123456, "source": "DEKRA"},
        "tyres_mm": {"fl": 4.5, "fr": 4.25, "rl": 3.0, "rr": 3.1},
        "dtc": {"status": "green", "codes": []},
        "provenance": {"captured_by": "system", "ts": "2024-05-01T10:00:00.000+02:00"},
    }


@pytest.fixture
def storage(tmp_path):
    return PassportStorage(str(tmp_path / "data"))


@pytest.fixture
def key_store(tmp_path, ec_keys):
    private_pem, public_pem = ec_keys
    keys_dir = tmp_path / "keys"
    keys_dir.mkdir()
    (keys_dir / "seal_private.pem").write_bytes(private_pem)
    (keys_dir / "seal_public.pem").write_bytes(public_pem)
    return KeyStore(str(keys_dir / "seal_private.pem"), str(keys_dir / "seal_public.pem"))
