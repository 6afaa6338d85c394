import json

import pytest

from intake.services.case_store import CaseStore
from intake.services.snapshot_storage import (
    LocalSnapshotStorage,
    SnapshotCipher,
    attach_local_persistence,
    load_store,
    storage_from_settings,
)


@pytest.fixture
def cipher() -> SnapshotCipher:
    # Low iteration count keeps key derivation fast in tests.
    return SnapshotCipher("correct horse battery staple", iterations=1_000)


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "data" / "intake.db")


def test_plain_round_trip(db_path: str) -> None:
    storage = LocalSnapshotStorage(db_path)
    assert storage.load() is None

    storage.save('{"version": 1}')
    storage.save('{"version": 1, "cases": []}')

    assert storage.load() == '{"version": 1, "cases": []}'


def test_keys_are_independent(db_path: str) -> None:
    first = LocalSnapshotStorage(db_path, key="one")
    second = LocalSnapshotStorage(db_path, key="two")
    first.save("a")

    assert second.load() is None
    first.clear()
    assert first.load() is None


def test_cipher_envelope(cipher: SnapshotCipher) -> None:
    envelope = cipher.encrypt("secret case data")
    data = json.loads(envelope)

    assert data["v"] == 1
    assert data["it"] == 1_000
    assert "secret case data" not in envelope
    assert cipher.decrypt(envelope) == "secret case data"


def test_cipher_salts_each_write(cipher: SnapshotCipher) -> None:
    assert cipher.encrypt("same") != cipher.encrypt("same")


def test_wrong_secret_fails(cipher: SnapshotCipher) -> None:
    envelope = cipher.encrypt("data")
    with pytest.raises(ValueError):
        SnapshotCipher("another secret", iterations=1_000).decrypt(envelope)


def test_tampered_ciphertext_fails(cipher: SnapshotCipher) -> None:
    data = json.loads(cipher.encrypt("data"))
    ct = data["ct"]
    data["ct"] = ct[:20] + ("A" if ct[20] != "A" else "B") + ct[21:]

    with pytest.raises(ValueError):
        cipher.decrypt(json.dumps(data))


@pytest.mark.parametrize("envelope", ["not json", "{}", '{"v": 2, "it": 1, "s": "", "ct": ""}', "[]"])
def test_malformed_envelope_fails(cipher: SnapshotCipher, envelope: str) -> None:
    with pytest.raises(ValueError):
        cipher.decrypt(envelope)


def test_cipher_requires_secret():
    with pytest.raises(ValueError):
        SnapshotCipher("")


def test_encrypted_storage_round_trip(db_path: str, cipher: SnapshotCipher) -> None:
    storage = LocalSnapshotStorage(db_path, cipher=cipher)
    storage.save('{"version": 1, "cases": []}')

    assert "cases" not in storage.load_blob()
    assert storage.load() == '{"version": 1, "cases": []}'


def test_persistence_follows_every_mutation(db_path: str, cipher: SnapshotCipher) -> None:
    storage = LocalSnapshotStorage(db_path, cipher=cipher)
    store = CaseStore()
    detach = attach_local_persistence(store, storage)

    case_id = store.create_case({"petitionerName": "Ana"})
    assert storage.load() == store.serialize()

    store.update_outputs(case_id, {"script2Min": "Your Honor..."})
    assert storage.load() == store.serialize()

    detach()
    store.clear_all()
    assert storage.load() != store.serialize()


def test_load_store_hydrates(db_path: str, cipher: SnapshotCipher) -> None:
    storage = LocalSnapshotStorage(db_path, cipher=cipher)
    store = CaseStore()
    attach_local_persistence(store, storage)
    case_id = store.create_case({"petitionerName": "Ana"})

    restored = load_store(storage)

    assert restored.active_case_id == case_id
    assert restored.get_case(case_id).intake.petitioner_name == "Ana"


def test_load_store_starts_empty_when_unreadable(db_path: str, cipher: SnapshotCipher) -> None:
    LocalSnapshotStorage(db_path, cipher=cipher).save('{"version": 1, "cases": []}')
    wrong_key = LocalSnapshotStorage(db_path, cipher=SnapshotCipher("other", iterations=1_000))

    assert load_store(wrong_key).cases == []
    assert load_store(LocalSnapshotStorage(db_path, key="never-written")).cases == []


def test_load_store_starts_empty_when_invalid(db_path: str) -> None:
    storage = LocalSnapshotStorage(db_path)
    storage.save('{"cases": "not a list"}')
    assert load_store(storage).cases == []


def test_storage_from_settings(tmp_path, monkeypatch):
    settings = {"storage": {"db_path": str(tmp_path / "configured.db"), "key": "configured"}}

    monkeypatch.delenv("INTAKE_STORAGE_KEY", raising=False)
    plain = storage_from_settings(settings)
    assert plain.key == "configured"
    assert plain.cipher is None

    monkeypatch.setenv("INTAKE_STORAGE_KEY", "from-env")
    assert storage_from_settings(settings).cipher is not None
