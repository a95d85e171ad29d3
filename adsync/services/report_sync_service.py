"""
Report Sync Service
Decides when the report sync is due, keeps it single-flight and runs the
dataset loaders in order, recording the outcome in the status store.

Single-flight is enforced twice:
  - in memory: one asyncio task handle, checked and assigned under a lock
  - in the database: try_begin() flips in_progress with a conditional UPDATE,
    so a second process sharing the database cannot start an overlapping run
"""
import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from adsync.config import Settings, get_settings
from adsync.connectors.base_connector import BaseConnector
from adsync.connectors.direct_reports import DirectReportsConnector
from adsync.models.sync_status import SyncState
from adsync.services.report_loaders import ConversionColumns, IncrementalLoader, build_default_loaders
from adsync.services.sync_status_store import SyncRunHistory, SyncStatusSnapshot, SyncStatusStore
from adsync.services.sync_windows import calculate_sync_windows
from adsync.utils.helpers import utcnow
from adsync.utils.logger import log

STARTED = "started"
ALREADY_RUNNING = "already_running"
NOT_DUE = "not_due"

SKIPPED = "skipped"
STALE_RUN_ERROR = "Sync interrupted before completion"


@dataclass
class SyncRunResult:
    """Outcome of one run() call"""
    success: bool
    trigger: str = "manual"
    status: str = SyncState.COMPLETED.value  # completed, failed, skipped
    records: int = 0
    error: Optional[str] = None
    datasets: Dict[str, int] = field(default_factory=dict)
    windows: Dict[str, Dict[str, str]] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "trigger": self.trigger,
            "status": self.status,
            "records": self.records,
            "error": self.error,
            "datasets": self.datasets,
            "windows": self.windows,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


class ReportSyncService:
    """
    Orchestrates the report sync.

    Args:
        status_store: Single-row status store (owned by this service)
        loaders: Dataset loaders, run in the given order
        history: Run history log
        settings: Sync policy (interval, windows, cooldown)
        clock: Returns the current naive UTC datetime
        connector: Upstream connector, used for credential checks and status
    """

    def __init__(
        self,
        status_store: Optional[SyncStatusStore] = None,
        loaders: Optional[Sequence[IncrementalLoader]] = None,
        history: Optional[SyncRunHistory] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        connector: Optional[BaseConnector] = None,
    ):
        self.settings = settings or get_settings()
        self.status_store = status_store or SyncStatusStore()
        self.history = history or SyncRunHistory()
        self.clock = clock or utcnow

        if loaders is None:
            connector = connector or DirectReportsConnector()
            loaders = build_default_loaders(
                connector, conversions=ConversionColumns.from_settings(self.settings)
            )
        self.connector = connector
        self.loaders: List[IncrementalLoader] = list(loaders)

        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Due check
    # ------------------------------------------------------------------

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """True when a new run should start (read-only)"""
        return self._is_due(self.status_store.read(), now or self.clock())

    def _is_due(self, status: SyncStatusSnapshot, now: datetime) -> bool:
        if status.last_status == SyncState.NEVER.value:
            return True
        if status.in_progress:
            return False

        # A failed run leaves last_sync_at untouched; back off instead of retrying on every request
        cooldown = timedelta(minutes=self.settings.sync_failure_cooldown_minutes)
        if (
            status.last_status == SyncState.FAILED.value
            and status.last_started_at is not None
            and now - status.last_started_at < cooldown
        ):
            return False

        if status.last_sync_at is None:
            return True
        return now - status.last_sync_at > timedelta(hours=self.settings.sync_interval_hours)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        task = self._task
        return task is not None and not task.done()

    def missing_credentials(self) -> List[str]:
        if self.connector is None:
            return []
        return list(self.connector.missing_credentials())

    def trigger_if_due(self, trigger: str = "request") -> bool:
        """
        Start a background run if one is due. Never waits for the run.

        Returns:
            True if a run was started by this call
        """
        return self.trigger(force=False, trigger=trigger) == STARTED

    def trigger(self, force: bool = False, trigger: str = "manual") -> str:
        """
        Start a background run on the current event loop.

        Args:
            force: Skip the interval check (an active run still blocks)
            trigger: Label stored in the run history (request, scheduled, manual)

        Returns:
            "started", "already_running" or "not_due"
        """
        loop = asyncio.get_running_loop()

        with self._lock:
            if self._task is not None and not self._task.done():
                return ALREADY_RUNNING

            status = self.status_store.read()
            if status.in_progress:
                return ALREADY_RUNNING
            if not force and not self._is_due(status, self.clock()):
                return NOT_DUE

            task = loop.create_task(self.run(trigger))
            self._task = task

        task.add_done_callback(self._on_task_done)
        log.info(f"Report sync started in background (trigger={trigger}, force={force})")
        return STARTED

    def _on_task_done(self, task: asyncio.Task):
        with self._lock:
            if self._task is task:
                self._task = None

        if task.cancelled():
            log.warning("Background report sync was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"Background report sync crashed: {exc}")

    async def wait_for_current_run(self) -> Optional[SyncRunResult]:
        """Join the in-flight background run, if any"""
        task = self._task
        if task is None:
            return None
        return await task

    async def shutdown(self, timeout: float = 30.0):
        """Give a running sync `timeout` seconds to finish, then cancel it"""
        task = self._task
        if task is None or task.done():
            return

        log.info(f"Waiting up to {timeout}s for the running report sync")
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            log.warning("Report sync still running at shutdown, cancelling")
            task.cancel()
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, trigger: str = "manual") -> SyncRunResult:
        """
        Run every loader once, in order, and record the outcome.

        The first failing loader stops the run; datasets loaded before it
        keep their new window. Errors never escape: they become a failed
        status and a failed result. Cancellation is recorded and re-raised.
        """
        started_at = self.clock()
        result = SyncRunResult(success=False, trigger=trigger, started_at=started_at)

        if not self.status_store.try_begin(started_at):
            log.warning("Report sync already in progress, not starting another run")
            result.status = SKIPPED
            result.error = "Sync already in progress"
            result.completed_at = started_at
            self.history.record(result)
            return result

        with log.contextualize(trigger=trigger):
            return await self._run_loaders(result)

    async def _run_loaders(self, result: SyncRunResult) -> SyncRunResult:
        try:
            windows = calculate_sync_windows(
                result.started_at,
                self.settings.sync_refresh_days,
                self.settings.sync_display_refresh_days,
                self.settings.sync_timezone,
            )
            log.info(
                f"Report sync running (trigger={result.trigger}): "
                + ", ".join(f"{name} {w.date_from}..{w.date_to}" for name, w in windows.items())
            )

            for loader in self.loaders:
                window = windows[loader.window_class]
                result.windows[loader.name] = window.to_dict()
                count = await loader.load(window)
                result.datasets[loader.name] = count
                result.records += count

        except asyncio.CancelledError:
            result.error = "Sync cancelled before completion"
            self._record_failure(result)
            raise

        except Exception as e:
            result.error = str(e) or type(e).__name__
            self._record_failure(result)
            return result

        completed_at = self.clock()
        self.status_store.write(
            last_sync_at=completed_at,
            last_status=SyncState.COMPLETED.value,
            last_error=None,
            last_record_count=result.records,
            in_progress=False,
        )
        result.success = True
        result.status = SyncState.COMPLETED.value
        self._finish(result, completed_at)

        log.info(
            f"Report sync completed: {result.records} records "
            f"({', '.join(f'{k}={v}' for k, v in result.datasets.items())}) "
            f"in {result.duration_seconds:.1f}s"
        )
        return result

    def _record_failure(self, result: SyncRunResult):
        log.error(f"Report sync failed: {result.error}")
        self.status_store.write(
            last_status=SyncState.FAILED.value,
            last_error=result.error,
            in_progress=False,
        )
        result.success = False
        result.status = SyncState.FAILED.value
        self._finish(result, self.clock())

    def _finish(self, result: SyncRunResult, completed_at: datetime):
        result.completed_at = completed_at
        result.duration_seconds = max(0.0, (completed_at - result.started_at).total_seconds())
        self.history.record(result)

    # ------------------------------------------------------------------
    # Maintenance / status
    # ------------------------------------------------------------------

    def recover_stale_run(self, now: Optional[datetime] = None) -> bool:
        """
        Reset an in_progress flag left behind by a crashed process.

        Runs older than sync_stale_run_minutes are marked failed so the next
        trigger can start again. A run owned by this process is never touched.
        """
        if self.is_running():
            return False

        now = now or self.clock()
        cutoff = now - timedelta(minutes=self.settings.sync_stale_run_minutes)
        released = self.status_store.release_stale(cutoff, STALE_RUN_ERROR)
        if released:
            log.warning(f"Released stale report sync started before {cutoff.isoformat()}")
        return released

    def get_status(self) -> Dict:
        """Status row plus in-memory state"""
        status = self.status_store.read()
        data = status.to_dict()
        data["running"] = self.is_running()
        data["due"] = self._is_due(status, self.clock())
        if self.connector is not None:
            data["connector"] = self.connector.get_status()
        return data


_service: Optional[ReportSyncService] = None
_service_lock = threading.Lock()


def get_report_sync_service() -> ReportSyncService:
    """Process-wide service used by the API, middleware and scheduler"""
    global _service
    with _service_lock:
        if _service is None:
            _service = ReportSyncService()
        return _service
