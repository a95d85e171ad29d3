"""
Sync status store

Durable single-row record of the report sync, plus the per-run history.
The store is owned and injected by the orchestrator; nothing else writes it.
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from adsync.models.base import SessionLocal
from adsync.models.sync_status import SYNC_STATUS_ID, SyncRunLog, SyncState, SyncStatus
from adsync.utils.helpers import utcnow
from adsync.utils.logger import log

MAX_ERROR_LENGTH = 1000

WRITABLE_FIELDS = (
    "last_sync_at",
    "last_status",
    "last_error",
    "last_record_count",
    "in_progress",
    "last_started_at",
)


@dataclass
class SyncStatusSnapshot:
    """Detached copy of the status row"""
    last_sync_at: Optional[datetime] = None
    last_status: str = SyncState.NEVER.value
    last_error: Optional[str] = None
    last_record_count: int = 0
    in_progress: bool = False
    last_started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: SyncStatus) -> "SyncStatusSnapshot":
        return cls(
            last_sync_at=row.last_sync_at,
            last_status=row.last_status or SyncState.NEVER.value,
            last_error=row.last_error,
            last_record_count=row.last_record_count or 0,
            in_progress=bool(row.in_progress),
            last_started_at=row.last_started_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


def _truncate_error(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return str(message)[:MAX_ERROR_LENGTH]


def _coerce_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(fields) - set(WRITABLE_FIELDS))
    if unknown:
        raise ValueError(f"Unknown sync status fields: {', '.join(unknown)}")

    values = dict(fields)
    if "in_progress" in values:
        values["in_progress"] = bool(values["in_progress"])
    if "last_record_count" in values:
        values["last_record_count"] = int(values["last_record_count"] or 0)
    if "last_error" in values:
        values["last_error"] = _truncate_error(values["last_error"])
    if "last_status" in values:
        # Rejects anything outside never/running/completed/failed
        values["last_status"] = SyncState(values["last_status"]).value
    return values


class SyncStatusStore:
    """Reads and writes the single sync_status row (id = 1)"""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    def _get_or_create(self, db: Session) -> SyncStatus:
        row = db.get(SyncStatus, SYNC_STATUS_ID)
        if row is not None:
            return row

        db.add(SyncStatus(
            id=SYNC_STATUS_ID,
            last_status=SyncState.NEVER.value,
            last_record_count=0,
            in_progress=False,
        ))
        try:
            db.commit()
        except IntegrityError:
            # Another process created the row first
            db.rollback()
        return db.get(SyncStatus, SYNC_STATUS_ID)

    def read(self) -> SyncStatusSnapshot:
        """Current status, creating the row with status 'never' on first access"""
        db = self.session_factory()
        try:
            return SyncStatusSnapshot.from_row(self._get_or_create(db))
        finally:
            db.close()

    def write(self, **fields) -> SyncStatusSnapshot:
        """
        Apply a partial update to the status row.

        Args:
            **fields: Any of WRITABLE_FIELDS

        Returns:
            The row after the update

        Raises:
            ValueError: unknown field or status value
        """
        values = _coerce_fields(fields)
        db = self.session_factory()
        try:
            row = self._get_or_create(db)
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            db.commit()
            return SyncStatusSnapshot.from_row(row)
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to write sync status: {e}")
            raise
        finally:
            db.close()

    def try_begin(self, started_at: Optional[datetime] = None) -> bool:
        """
        Atomically claim the run: flip in_progress 0 -> 1.

        Only one caller (in any process sharing the database) can win;
        the affected-row count tells which one did.
        """
        started_at = started_at or utcnow()
        db = self.session_factory()
        try:
            self._get_or_create(db)
            result = db.execute(
                update(SyncStatus)
                .where(SyncStatus.id == SYNC_STATUS_ID, SyncStatus.in_progress == False)  # noqa: E712
                .values(
                    in_progress=True,
                    last_status=SyncState.RUNNING.value,
                    last_started_at=started_at,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to claim sync run: {e}")
            raise
        finally:
            db.close()

    def release_stale(self, started_before: datetime, error: str) -> bool:
        """
        Mark an in-progress run that started before `started_before` as failed.

        Returns:
            True if a stale run was released
        """
        db = self.session_factory()
        try:
            self._get_or_create(db)
            result = db.execute(
                update(SyncStatus)
                .where(
                    SyncStatus.id == SYNC_STATUS_ID,
                    SyncStatus.in_progress == True,  # noqa: E712
                    or_(
                        SyncStatus.last_started_at.is_(None),
                        SyncStatus.last_started_at < started_before,
                    ),
                )
                .values(
                    in_progress=False,
                    last_status=SyncState.FAILED.value,
                    last_error=_truncate_error(error),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to release stale sync run: {e}")
            raise
        finally:
            db.close()


class SyncRunHistory:
    """Append-only log of finished sync attempts (sync_run_logs)"""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    def record(self, result) -> Optional[int]:
        """
        Persist one finished run.

        History is informational; a failure here is logged and never changes
        the outcome of the run itself.

        Returns:
            The log id, or None if it could not be written
        """
        db = self.session_factory()
        try:
            entry = SyncRunLog(
                trigger=result.trigger,
                status=result.status,
                records=result.records,
                datasets=dict(result.datasets) or None,
                error_message=_truncate_error(result.error),
                started_at=result.started_at or utcnow(),
                completed_at=result.completed_at,
                duration_seconds=result.duration_seconds,
            )
            db.add(entry)
            db.commit()
            log.debug(f"Sync run logged: {entry.trigger} | {entry.status} | id={entry.id}")
            return entry.id
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to persist sync run log: {e}")
            return None
        finally:
            db.close()

    def recent(
        self,
        limit: int = 20,
        hours: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Most recent runs first, optionally limited to the last `hours`"""
        db = self.session_factory()
        try:
            query = db.query(SyncRunLog)
            if status:
                query = query.filter(SyncRunLog.status == status)
            if hours:
                query = query.filter(SyncRunLog.started_at >= utcnow() - timedelta(hours=hours))
            rows = query.order_by(SyncRunLog.started_at.desc(), SyncRunLog.id.desc()).limit(limit).all()
            return [
                {
                    "id": row.id,
                    "trigger": row.trigger,
                    "status": row.status,
                    "records": row.records,
                    "datasets": row.datasets or {},
                    "error_message": row.error_message,
                    "started_at": row.started_at.isoformat() if row.started_at else None,
                    "completed_at": row.completed_at.isoformat() if row.completed_at else None,
                    "duration_seconds": row.duration_seconds,
                }
                for row in rows
            ]
        finally:
            db.close()
