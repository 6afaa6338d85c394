"""
Cloud sync for the case store.

Two independent flows run against a remote key-value backend keyed by user id:

* restore-on-sign-in: the first time an identity signs in, the remote
  snapshot (if any) replaces local state wholesale. Signing in again with the
  same identity does not pull again.
* debounced push: store changes while signed in arm a timer; each new change
  resets it. When it fires the whole snapshot overwrites the remote copy.

Both are last-write-wins at whole-document granularity. There is no version
check, so two devices signed in as the same user overwrite each other.
Push failures are logged and dropped without retry; anything changed since
the last successful push is only local until the next change re-arms the
timer.

Restore failures of any kind are logged and leave local data in place; the
coordinator still moves on to restored. Edits made while a restore is in
flight are overwritten if the pull succeeds. If it fails or finds nothing,
they are pushed after one debounce window.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional, Set

from pydantic import BaseModel

from intake.config_loader import get_settings
from intake.exceptions import RemoteUnavailable
from intake.services.case_store import CaseStore
from intake.services.remote_storage import SnapshotBackend
from intake.services.snapshot_storage import LocalSnapshotStorage

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    ANONYMOUS = "anonymous"
    PENDING_RESTORE = "pending_restore"
    RESTORED = "restored"


class SyncResult(BaseModel):
    ok: bool
    error: Optional[str] = None


class CloudSyncCoordinator:
    def __init__(
        self,
        store: CaseStore,
        backend: SnapshotBackend,
        storage: Optional[LocalSnapshotStorage] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.store = store
        self.backend = backend
        self.storage = storage
        if debounce_seconds is None:
            debounce_seconds = float(get_settings()["sync"]["debounce_seconds"])
        self.debounce_seconds = debounce_seconds

        self.state = SyncState.ANONYMOUS
        self.user_id: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._push_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._restoring = False
        self._changed_while_pending = False
        self._unsubscribe = store.subscribe(self._on_store_change)

    @property
    def push_pending(self) -> bool:
        return self._timer is not None

    def _encode(self, snapshot_json: str) -> str:
        return self.storage.encode(snapshot_json) if self.storage else snapshot_json

    def _decode(self, blob: str) -> str:
        return self.storage.decode(blob) if self.storage else blob

    # Identity

    async def handle_auth_change(self, user_id: Optional[str]) -> None:
        """
        Drives the restore gate: anonymous -> pending_restore -> restored.

        A repeated event for the identity already signed in is ignored, so a
        reload within the same session never pulls twice.
        """
        self._loop = asyncio.get_running_loop()

        if user_id is None:
            if self.state is not SyncState.ANONYMOUS:
                logger.info(f"User {self.user_id} signed out; cancelling pending sync")
            self._cancel_timer()
            self.user_id = None
            self.state = SyncState.ANONYMOUS
            return

        if user_id == self.user_id and self.state is not SyncState.ANONYMOUS:
            return

        self._cancel_timer()
        self.user_id = user_id
        self.state = SyncState.PENDING_RESTORE
        self._changed_while_pending = False
        result = await self._restore(user_id)
        if self.user_id != user_id:
            return
        self.state = SyncState.RESTORED
        if not result.ok and self._changed_while_pending:
            logger.info(f"Local changes made during restore for {user_id}; scheduling push")
            self._schedule_push()
        self._changed_while_pending = False

    # Pull

    async def _restore(self, user_id: str) -> SyncResult:
        try:
            blob = await self.backend.load(user_id)
        except RemoteUnavailable as e:
            logger.warning(f"Cloud restore failed for {user_id}: {e.detail}")
            return SyncResult(ok=False, error=e.detail)
        except Exception as e:
            logger.warning(f"Cloud restore failed for {user_id}: {e}", exc_info=True)
            return SyncResult(ok=False, error=str(e))

        if blob is None:
            logger.info(f"No cloud snapshot for {user_id}; keeping local data")
            return SyncResult(ok=False, error="No cloud backup found for this account.")

        try:
            snapshot_json = self._decode(blob)
            self._restoring = True
            self.store.deserialize(snapshot_json)
        except ValueError as e:
            logger.warning(f"Cloud snapshot for {user_id} is unreadable; keeping local data: {e}")
            return SyncResult(ok=False, error="Cloud backup could not be read.")
        finally:
            self._restoring = False

        logger.info(f"Restored {len(self.store.cases)} case(s) from cloud for {user_id}")
        return SyncResult(ok=True)

    async def restore_now(self) -> SyncResult:
        """Pulls the remote snapshot on demand, replacing local state."""
        if self.user_id is None:
            return SyncResult(ok=False, error="Not signed in.")
        return await self._restore(self.user_id)

    # Push

    def _on_store_change(self) -> None:
        if self._restoring:
            return
        if self.state is SyncState.PENDING_RESTORE:
            self._changed_while_pending = True
            return
        if self.state is not SyncState.RESTORED or self._loop is None:
            return
        self._schedule_push()

    def _schedule_push(self) -> None:
        self._cancel_timer()
        self._timer = self._loop.call_later(self.debounce_seconds, self._fire)

    def _fire(self) -> None:
        self._timer = None
        task = self._loop.create_task(self._push())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        self._push_task = task

    async def _push(self) -> SyncResult:
        user_id = self.user_id
        if user_id is None:
            return SyncResult(ok=False, error="Not signed in.")

        blob = self._encode(self.store.serialize())
        try:
            await self.backend.save(user_id, blob)
        except RemoteUnavailable as e:
            logger.warning(f"Cloud push failed for {user_id}: {e.detail}")
            return SyncResult(ok=False, error=e.detail)
        except Exception as e:
            logger.warning(f"Cloud push failed for {user_id}: {e}", exc_info=True)
            return SyncResult(ok=False, error=str(e))

        logger.debug(f"Pushed snapshot for {user_id}")
        return SyncResult(ok=True)

    async def flush(self) -> SyncResult:
        """Pushes immediately instead of waiting for the debounce window."""
        self._cancel_timer()
        return await self._push()

    # Lifecycle

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        """Stops observing the store and drops any pending push. A push already sent is not cancelled."""
        self._cancel_timer()
        self._unsubscribe()

    async def aclose(self) -> None:
        """Like close, but waits for pushes already in flight to finish."""
        self.close()
        if self._in_flight:
            await asyncio.gather(*self._in_flight)
