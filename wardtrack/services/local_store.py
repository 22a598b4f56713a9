"""
WardTrack Local Replica Store
SQLAlchemy-backed offline copy of remote collections with sync/tombstone flags
"""

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from wardtrack.clock import Clock, SystemClock
from wardtrack.models import Base, ReplicaRecord
from wardtrack.schemas import SyncableRecord, SyncOperation

logger = logging.getLogger(__name__)


def create_replica_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build the engine for the local replica

    In-memory SQLite shares a single connection so every session sees the same
    database.
    """
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


class LocalReplicaStore:
    """Service for reading and writing replica records"""

    def __init__(self, engine: Engine, clock: Optional[Clock] = None):
        self.engine = engine
        self.clock = clock or SystemClock()
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False, clock: Optional[Clock] = None) -> "LocalReplicaStore":
        store = cls(create_replica_engine(database_url, echo), clock)
        store.create_tables()
        return store

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info(f"✓ Local replica tables ready ({self.engine.url.render_as_string(hide_password=True)})")

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Conversion
    # =========================================================================

    @staticmethod
    def _to_record(row: ReplicaRecord) -> SyncableRecord:
        return SyncableRecord(
            collection=row.collection,
            id=row.record_id,
            payload=dict(row.payload or {}),
            synced=row.synced,
            deleted=row.deleted,
            pending_operation=row.pending_operation,
            version=row.version,
            updated_at=row.updated_at,
            last_synced_at=row.last_synced_at,
            last_error=row.last_error,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, collection: str, record_id: str) -> Optional[SyncableRecord]:
        with self._session() as session:
            row = session.get(ReplicaRecord, (collection, record_id))
            return self._to_record(row) if row else None

    def list(self, collection: str, include_deleted: bool = False) -> List[SyncableRecord]:
        """Records in a collection; tombstones excluded unless asked for"""
        stmt = select(ReplicaRecord).where(ReplicaRecord.collection == collection)
        if not include_deleted:
            stmt = stmt.where(ReplicaRecord.deleted.is_(False))
        stmt = stmt.order_by(ReplicaRecord.created_at, ReplicaRecord.record_id)

        with self._session() as session:
            return [self._to_record(row) for row in session.scalars(stmt)]

    def dirty(self, collection: str) -> List[SyncableRecord]:
        """Unsynced live records awaiting a remote write"""
        stmt = (
            select(ReplicaRecord)
            .where(ReplicaRecord.collection == collection)
            .where(ReplicaRecord.synced.is_(False))
            .where(ReplicaRecord.deleted.is_(False))
            .order_by(ReplicaRecord.updated_at)
        )
        with self._session() as session:
            return [self._to_record(row) for row in session.scalars(stmt)]

    def pending_deletes(self, collection: str) -> List[SyncableRecord]:
        """Tombstones whose remote delete was never confirmed"""
        stmt = (
            select(ReplicaRecord)
            .where(ReplicaRecord.collection == collection)
            .where(ReplicaRecord.synced.is_(False))
            .where(ReplicaRecord.deleted.is_(True))
            .order_by(ReplicaRecord.updated_at)
        )
        with self._session() as session:
            return [self._to_record(row) for row in session.scalars(stmt)]

    def counts(self, collection: str) -> Tuple[int, int]:
        """(pending writes, pending deletes) for a collection"""
        stmt = (
            select(ReplicaRecord.deleted, func.count())
            .where(ReplicaRecord.collection == collection)
            .where(ReplicaRecord.synced.is_(False))
            .group_by(ReplicaRecord.deleted)
        )
        with self._session() as session:
            totals = {deleted: count for deleted, count in session.execute(stmt)}
        return totals.get(False, 0), totals.get(True, 0)

    # =========================================================================
    # Writes
    # =========================================================================

    def _apply(self, session: Session, record: SyncableRecord) -> ReplicaRecord:
        now = self.clock.now()
        row = session.get(ReplicaRecord, (record.collection, record.id))

        if row is None:
            row = ReplicaRecord(
                collection=record.collection,
                record_id=record.id,
                version=record.version,
                created_at=now,
            )
            session.add(row)
        else:
            row.version = row.version + 1

        row.payload = dict(record.payload)
        row.synced = record.synced
        row.deleted = record.deleted
        row.pending_operation = record.pending_operation.value if record.pending_operation else None
        row.last_error = record.last_error
        row.updated_at = now
        if record.synced:
            row.last_synced_at = record.last_synced_at or now
        return row

    def put(self, record: SyncableRecord) -> SyncableRecord:
        """Insert or overwrite a record; every write bumps its version"""
        with self._session() as session:
            row = self._apply(session, record)
            session.flush()
            return self._to_record(row)

    def put_many(self, records: Iterable[SyncableRecord]) -> List[SyncableRecord]:
        """Bulk upsert in a single transaction"""
        with self._session() as session:
            rows = [self._apply(session, record) for record in records]
            session.flush()
            return [self._to_record(row) for row in rows]

    def mark_synced(self, collection: str, record_id: str, expected_version: Optional[int] = None) -> bool:
        """
        Flag a record as confirmed by the remote store

        Args:
            collection: Collection name
            record_id: Record id
            expected_version: Version that was sent; a newer local write keeps the record dirty

        Returns:
            True if the flag was set
        """
        with self._session() as session:
            row = session.get(ReplicaRecord, (collection, record_id))
            if row is None:
                return False
            if expected_version is not None and row.version != expected_version:
                logger.info(
                    f"{collection}/{record_id} changed locally during sync "
                    f"(v{expected_version} → v{row.version}); left dirty"
                )
                return False

            row.synced = True
            row.pending_operation = None
            row.last_error = None
            row.last_synced_at = self.clock.now()
            return True

    def mark_failed(self, collection: str, record_id: str, error: str) -> None:
        """Keep a record dirty and remember why the last attempt failed"""
        with self._session() as session:
            row = session.get(ReplicaRecord, (collection, record_id))
            if row is not None:
                row.last_error = error[:1000]

    def tombstone(self, collection: str, record_id: str, confirmed: bool) -> SyncableRecord:
        """Mark a record deleted; an unknown id still gets a tombstone"""
        existing = self.get(collection, record_id)
        record = existing.model_copy() if existing else SyncableRecord(collection=collection, id=record_id)
        record.deleted = True
        record.synced = confirmed
        record.pending_operation = None if confirmed else SyncOperation.DELETE
        return self.put(record)
