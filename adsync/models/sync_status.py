"""
Sync status models

SyncStatus is a single-row record (id = 1) describing the most recent run
across all datasets. SyncRunLog keeps one row per finished attempt.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Text, JSON
from datetime import datetime

from adsync.models.base import Base

SYNC_STATUS_ID = 1


class SyncState(str, Enum):
    NEVER = "never"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncStatus(Base):
    """
    Durable health record of the report sync

    Invariant: in_progress implies last_status == 'running'.
    Only the sync orchestrator writes to it.
    """
    __tablename__ = "sync_status"

    id = Column(Integer, primary_key=True, default=SYNC_STATUS_ID)

    last_sync_at = Column(DateTime, nullable=True)  # Last successful completion
    last_status = Column(String, nullable=False, default=SyncState.NEVER.value)
    last_error = Column(Text, nullable=True)
    last_record_count = Column(Integer, nullable=False, default=0)
    in_progress = Column(Boolean, nullable=False, default=False)

    last_started_at = Column(DateTime, nullable=True)  # Start of the latest attempt

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SyncStatus {self.last_status} in_progress={self.in_progress}>"


class SyncRunLog(Base):
    """History of finished sync attempts"""
    __tablename__ = "sync_run_logs"

    id = Column(Integer, primary_key=True, index=True)

    trigger = Column(String, nullable=False)  # request, scheduled, manual
    status = Column(String, index=True, nullable=False)  # completed, failed, skipped
    records = Column(Integer, default=0)
    datasets = Column(JSON, nullable=True)  # {"campaign_daily": 120, ...}
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, index=True, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    def __repr__(self):
        return f"<SyncRunLog {self.trigger} {self.status} @ {self.started_at}>"
