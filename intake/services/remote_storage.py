import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx

from intake.config_loader import get_settings
from intake.exceptions import RemoteUnavailable


class SnapshotBackend(Protocol):
    """Remote key-value storage holding one snapshot blob per user."""

    async def load(self, user_id: str) -> Optional[str]:
        ...

    async def save(self, user_id: str, blob: str) -> None:
        ...


class InMemorySnapshotBackend:
    """Process-local backend for development and tests."""

    def __init__(self, documents: Optional[Dict[str, str]] = None):
        self.documents = documents if documents is not None else {}

    async def load(self, user_id: str) -> Optional[str]:
        return self.documents.get(user_id)

    async def save(self, user_id: str, blob: str) -> None:
        self.documents[user_id] = blob


class SupabaseSnapshotBackend:
    """
    Stores snapshots in a Supabase `user_data` table through its REST API.

    The table holds the same (optionally encrypted) blob that is kept locally,
    so the server never needs to read case data.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        table: str = "user_data",
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = (url or os.getenv("SUPABASE_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("SUPABASE_KEY")
        if not self.url or not self.api_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required for cloud sync.")
        self.table = table
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
            "Content-Type": "application/json",
        }

    @property
    def endpoint(self) -> str:
        return f"{self.url}/rest/v1/{self.table}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self.headers, timeout=self.timeout, transport=self.transport)

    async def load(self, user_id: str) -> Optional[str]:
        params = {"user_id": f"eq.{user_id}", "select": "encrypted_data"}
        async with self._client() as client:
            try:
                response = await client.get(self.endpoint, params=params)
            except httpx.HTTPError as e:
                raise RemoteUnavailable(f"Network error loading snapshot: {e}")

        if response.status_code != 200:
            raise RemoteUnavailable(f"Snapshot load failed: {response.status_code} - {response.text}")
        try:
            rows = response.json()
        except ValueError:
            raise RemoteUnavailable(f"Snapshot load returned a non-JSON body: {response.text[:200]}")
        if not isinstance(rows, list):
            raise RemoteUnavailable(f"Snapshot load returned {type(rows).__name__}, expected a list of rows")
        if not rows:
            return None
        row = rows[0]
        if not isinstance(row, dict):
            raise RemoteUnavailable("Snapshot load returned a malformed row")
        blob = row.get("encrypted_data")
        if blob is not None and not isinstance(blob, str):
            raise RemoteUnavailable("Snapshot row has a non-text encrypted_data column")
        return blob

    async def save(self, user_id: str, blob: str) -> None:
        row = {
            "user_id": user_id,
            "encrypted_data": blob,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        headers = {"Prefer": "resolution=merge-duplicates,return=minimal"}
        async with self._client() as client:
            try:
                response = await client.post(
                    self.endpoint, params={"on_conflict": "user_id"}, json=row, headers=headers
                )
            except httpx.HTTPError as e:
                raise RemoteUnavailable(f"Network error saving snapshot: {e}")

        if response.status_code not in (200, 201, 204):
            raise RemoteUnavailable(f"Snapshot save failed: {response.status_code} - {response.text}")


def backend_from_settings(
    settings: Optional[Dict[str, Any]] = None, access_token: Optional[str] = None
) -> SupabaseSnapshotBackend:
    """Supabase backend for the configured table, using SUPABASE_URL and SUPABASE_KEY."""
    sync_settings = (settings or get_settings())["sync"]
    return SupabaseSnapshotBackend(table=sync_settings.get("table", "user_data"), access_token=access_token)
