"""
WardTrack Sync Coordinator
Offline-first reads and writes: remote store first, local replica as fallback,
dirty records pushed again by reconcile()
"""

import asyncio
import logging
import weakref
from typing import Any, Dict, List, Optional

from wardtrack.clock import Clock
from wardtrack.exceptions import (
    ReconciliationConflict,
    RecordNotFound,
    RemoteRequestError,
    RemoteUnavailable,
)
from wardtrack.schemas import ReconcileResult, SyncableRecord, SyncOperation, SyncStatus, new_id
from wardtrack.services.local_store import LocalReplicaStore
from wardtrack.services.remote_store import RemoteStore

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """
    Coordinates one collection between the remote store and the local replica

    Only RemoteUnavailable is absorbed (the operation degrades to a local write
    or a local read). RemoteRequestError propagates to the caller.
    """

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalReplicaStore,
        collection: str,
        clock: Optional[Clock] = None,
        id_prefix: Optional[str] = None
    ):
        self.remote = remote
        self.local = local
        self.collection = collection
        self.clock = clock or local.clock
        self.id_prefix = id_prefix or collection.rstrip("s")
        self.conflicts: List[ReconciliationConflict] = []
        # a lock lives only while some coroutine holds or waits on it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, record_id: str) -> asyncio.Lock:
        lock = self._locks.get(record_id)
        if lock is None:
            lock = self._locks[record_id] = asyncio.Lock()
        return lock

    def _record_conflict(self, local: SyncableRecord) -> None:
        conflict = ReconciliationConflict(self.collection, local.id, local.version)
        self.conflicts.append(conflict)
        logger.warning(str(conflict))

    def _synced(self, payload: Dict[str, Any]) -> SyncableRecord:
        return SyncableRecord(
            collection=self.collection,
            id=str(payload["id"]),
            payload=payload,
            synced=True,
            last_synced_at=self.clock.now(),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch_all(self) -> List[Dict[str, Any]]:
        """
        Read the whole collection

        Returns:
            Remote records (mirrored into the replica), or live local records
            when the remote store is unavailable
        """
        try:
            remote_records = await self.remote.list(self.collection)
        except RemoteUnavailable as e:
            logger.warning(f"Remote store unavailable, serving local {self.collection}: {e}")
            return [record.payload for record in self.local.list(self.collection)]

        mirrored = []
        result = []
        for payload in remote_records:
            if not payload.get("id"):
                logger.warning(f"Skipping {self.collection} record without id from remote store")
                continue

            local = self.local.get(self.collection, str(payload["id"]))
            if local is not None and local.deleted and not local.synced:
                # pending tombstone: the delete is retried by reconcile()
                continue
            if local is not None and local.is_dirty and not local.deleted:
                self._record_conflict(local)

            mirrored.append(self._synced(payload))
            result.append(payload)

        self.local.put_many(mirrored)
        logger.info(f"✓ Fetched {len(result)} {self.collection} from remote store")
        return result

    async def fetch_one(self, record_id: str) -> Optional[Dict[str, Any]]:
        """Read one record; local copy when the remote store is unavailable"""
        try:
            payload = await self.remote.get(self.collection, record_id)
        except RemoteUnavailable as e:
            logger.warning(f"Remote store unavailable, serving local {self.collection}/{record_id}: {e}")
            local = self.local.get(self.collection, record_id)
            return local.payload if local is not None and not local.deleted else None

        local = self.local.get(self.collection, record_id)

        if payload is None:
            # created offline and not yet pushed
            if local is not None and not local.deleted and local.pending_operation == SyncOperation.CREATE:
                return local.payload
            return None

        if local is not None and local.deleted and not local.synced:
            return None
        if local is not None and local.is_dirty and not local.deleted:
            self._record_conflict(local)

        self.local.put(self._synced(payload))
        return payload

    # =========================================================================
    # Writes
    # =========================================================================

    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a record

        A client-side id is assigned when missing so a later retry upserts the
        same record instead of duplicating it.

        Returns:
            Stored record, or the local record when the remote store is unavailable
        """
        record = dict(payload)
        record["id"] = str(record.get("id") or new_id(self.id_prefix))

        async with self._lock_for(record["id"]):
            try:
                stored = await self.remote.upsert(self.collection, record)
            except RemoteUnavailable as e:
                logger.warning(f"Remote store unavailable; {self.collection}/{record['id']} saved locally: {e}")
                self.local.put(SyncableRecord(
                    collection=self.collection,
                    id=record["id"],
                    payload=record,
                    synced=False,
                    pending_operation=SyncOperation.CREATE,
                    last_error=str(e),
                ))
                return record

            self.local.put(self._synced(stored))
            return stored

    async def update(self, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge changes into a record

        Raises:
            RecordNotFound: the record is tombstoned locally
        """
        async with self._lock_for(record_id):
            existing = self.local.get(self.collection, record_id)
            if existing is not None and existing.deleted:
                raise RecordNotFound(f"{self.collection}/{record_id} has been deleted")

            base = existing.payload if existing is not None else {}
            merged = {**base, **changes, "id": record_id}
            never_pushed = existing is not None and existing.pending_operation == SyncOperation.CREATE

            try:
                if never_pushed:
                    stored = await self.remote.upsert(self.collection, merged)
                else:
                    stored = await self.remote.update(self.collection, record_id, merged)
            except RemoteUnavailable as e:
                logger.warning(f"Remote store unavailable; {self.collection}/{record_id} updated locally: {e}")
                self.local.put(SyncableRecord(
                    collection=self.collection,
                    id=record_id,
                    payload=merged,
                    synced=False,
                    pending_operation=SyncOperation.CREATE if never_pushed else SyncOperation.UPDATE,
                    last_error=str(e),
                ))
                return merged

            self.local.put(self._synced(stored))
            return stored

    async def delete(self, record_id: str) -> bool:
        """
        Delete a record

        The local copy is always tombstoned, also when the remote store
        rejects the delete; the rejection then propagates and the delete stays
        pending for reconcile().

        Returns:
            True if the remote store confirmed the delete
        """
        async with self._lock_for(record_id):
            confirmed = False
            try:
                await self.remote.delete(self.collection, record_id)
                confirmed = True
            except RemoteUnavailable as e:
                logger.warning(f"Remote store unavailable; delete of {self.collection}/{record_id} pending: {e}")
            finally:
                self.local.tombstone(self.collection, record_id, confirmed)
            return confirmed

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile(self) -> ReconcileResult:
        """
        Push every dirty record and pending delete to the remote store

        Safe to run concurrently and repeatedly: each record is handled under
        its own lock and re-read before pushing, so a record already synced by
        another pass is skipped.

        The pass stops at the first RemoteUnavailable; the records not yet
        pushed are counted as skipped and stay dirty for the next pass.
        """
        result = ReconcileResult(collection=self.collection)
        pending = [(record.id, self._push_write) for record in self.local.dirty(self.collection)]
        pending += [(record.id, self._push_delete) for record in self.local.pending_deletes(self.collection)]

        for index, (record_id, push) in enumerate(pending):
            if not await push(record_id, result):
                result.skipped = len(pending) - index - 1
                logger.warning(
                    f"Remote store unavailable; reconcile of {self.collection} stopped, "
                    f"{result.skipped} records left for the next pass"
                )
                break

        if result.attempted:
            logger.info(
                f"Reconciled {self.collection}: {result.synced} synced, "
                f"{result.deletes_confirmed} deletes confirmed, {result.failed} failed, "
                f"{result.skipped} skipped"
            )
        return result

    async def _push_write(self, record_id: str, result: ReconcileResult) -> bool:
        """Push one dirty record; False when the remote store is unreachable"""
        async with self._lock_for(record_id):
            current = self.local.get(self.collection, record_id)
            if current is None or current.synced or current.deleted:
                return True

            result.attempted += 1
            try:
                await self.remote.upsert(self.collection, {**current.payload, "id": record_id})
            except RemoteUnavailable as e:
                self._fail(record_id, e, result)
                return False
            except RemoteRequestError as e:
                self._fail(record_id, e, result)
                return True

            if self.local.mark_synced(self.collection, record_id, expected_version=current.version):
                result.synced += 1
            return True

    async def _push_delete(self, record_id: str, result: ReconcileResult) -> bool:
        async with self._lock_for(record_id):
            current = self.local.get(self.collection, record_id)
            if current is None or current.synced or not current.deleted:
                return True

            result.attempted += 1
            try:
                await self.remote.delete(self.collection, record_id)
            except RemoteUnavailable as e:
                self._fail(record_id, e, result)
                return False
            except RemoteRequestError as e:
                self._fail(record_id, e, result)
                return True

            if self.local.mark_synced(self.collection, record_id, expected_version=current.version):
                result.deletes_confirmed += 1
            return True

    def _fail(self, record_id: str, error: Exception, result: ReconcileResult) -> None:
        """Leave the record dirty and note why"""
        result.failed += 1
        result.errors.append(f"{record_id}: {error}")
        self.local.mark_failed(self.collection, record_id, str(error))
        if isinstance(error, RemoteRequestError):
            logger.error(f"Remote store rejected {self.collection}/{record_id}: {error}")
        else:
            logger.warning(f"Reconcile of {self.collection}/{record_id} failed: {error}")

    def status(self) -> SyncStatus:
        pending_writes, pending_deletes = self.local.counts(self.collection)
        return SyncStatus(
            collection=self.collection,
            pending_writes=pending_writes,
            pending_deletes=pending_deletes,
            conflicts=len(self.conflicts),
        )
