import base64
import json
import logging
import os
import sqlite3
from typing import Any, Callable, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from intake.config_loader import get_settings
from intake.services.case_store import CaseStore

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1
PBKDF2_ITERATIONS = 200_000
SALT_BYTES = 16


class SnapshotCipher:
    """
    Versioned envelope encryption for persisted snapshots.

    The envelope is JSON: {"v": 1, "it": iterations, "s": salt, "ct": fernet token}.
    Fernet authenticates the ciphertext, so a tampered blob fails to decrypt.
    Client-side encryption does not protect data from a compromised device.
    """

    def __init__(self, secret: str, iterations: int = PBKDF2_ITERATIONS):
        if not secret:
            raise ValueError("A storage secret is required for encryption.")
        self.secret = secret.encode("utf-8")
        self.iterations = iterations

    def _fernet(self, salt: bytes, iterations: int) -> Fernet:
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
        return Fernet(base64.urlsafe_b64encode(kdf.derive(self.secret)))

    def encrypt(self, plaintext: str) -> str:
        salt = os.urandom(SALT_BYTES)
        token = self._fernet(salt, self.iterations).encrypt(plaintext.encode("utf-8"))
        return json.dumps({
            "v": ENVELOPE_VERSION,
            "it": self.iterations,
            "s": base64.b64encode(salt).decode("ascii"),
            "ct": token.decode("ascii"),
        })

    def decrypt(self, envelope: str) -> str:
        try:
            data = json.loads(envelope)
            if data.get("v") != ENVELOPE_VERSION:
                raise ValueError(f"Unsupported envelope version: {data.get('v')}")
            salt = base64.b64decode(data["s"])
            token = data["ct"].encode("ascii")
            plaintext = self._fernet(salt, int(data["it"])).decrypt(token)
        except (InvalidToken, KeyError, TypeError, AttributeError, json.JSONDecodeError) as e:
            raise ValueError(f"Snapshot envelope could not be decrypted: {e!r}")
        return plaintext.decode("utf-8")


class LocalSnapshotStorage:
    """Durable client-side snapshot storage: one row per key in a SQLite table."""

    def __init__(self, db_path: str = "data/intake.db", key: str = "ny-op-case-store",
                 cipher: Optional[SnapshotCipher] = None):
        self.db_path = db_path
        self.key = key
        self.cipher = cipher
        if os.path.dirname(self.db_path):
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        self._init_db()

    def _init_db(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    key TEXT PRIMARY KEY,
                    blob TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

    def encode(self, snapshot_json: str) -> str:
        """Turns a serialized store into the blob that is written locally and pushed to the cloud."""
        return self.cipher.encrypt(snapshot_json) if self.cipher else snapshot_json

    def decode(self, blob: str) -> str:
        return self.cipher.decrypt(blob) if self.cipher else blob

    def save_blob(self, blob: str):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO snapshots (key, blob, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET blob = excluded.blob, updated_at = excluded.updated_at",
                (self.key, blob)
            )
            conn.commit()

    def load_blob(self) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT blob FROM snapshots WHERE key = ?", (self.key,)).fetchone()
        return row[0] if row else None

    def save(self, snapshot_json: str):
        self.save_blob(self.encode(snapshot_json))

    def load(self) -> Optional[str]:
        blob = self.load_blob()
        return self.decode(blob) if blob is not None else None

    def clear(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM snapshots WHERE key = ?", (self.key,))
            conn.commit()


def attach_local_persistence(store: CaseStore, storage: LocalSnapshotStorage) -> Callable[[], None]:
    """Writes the store to durable storage after every committed mutation."""
    def persist():
        storage.save(store.serialize())
    return store.subscribe(persist)


def load_store(storage: LocalSnapshotStorage) -> CaseStore:
    """Hydrates a store from durable storage. Unreadable data starts an empty store and is logged."""
    try:
        snapshot_json = storage.load()
    except ValueError as e:
        logger.warning(f"Local snapshot unreadable, starting empty: {e}")
        return CaseStore()
    if snapshot_json is None:
        return CaseStore()
    try:
        return CaseStore.from_json(snapshot_json)
    except ValueError as e:
        logger.warning(f"Local snapshot invalid, starting empty: {e}")
        return CaseStore()


def storage_from_settings(settings: Optional[Dict[str, Any]] = None) -> LocalSnapshotStorage:
    """Local storage configured from settings.yaml; encrypted when INTAKE_STORAGE_KEY is set."""
    storage_settings = (settings or get_settings())["storage"]
    secret = os.getenv("INTAKE_STORAGE_KEY")
    return LocalSnapshotStorage(
        db_path=storage_settings["db_path"],
        key=storage_settings.get("key", "ny-op-case-store"),
        cipher=SnapshotCipher(secret) if secret else None,
    )
