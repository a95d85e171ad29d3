"""
Exceptions raised by the report sync engine
"""
from typing import Iterable, Optional


class SyncError(Exception):
    """Base class for report sync failures"""


class ConfigurationMissing(SyncError):
    """Required credentials or identifiers are not configured"""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(
            f"{' and '.join(name.upper() for name in self.missing)} must be configured"
        )


class FetchError(SyncError):
    """Report could not be retrieved from the upstream API"""


class FetchRejected(FetchError):
    """Upstream answered with a non-retryable status"""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"API error {status}: {body}")


class RetryExhausted(FetchError):
    """Report was still queued when the poll ceiling was reached"""

    def __init__(self, polls: int, report_name: Optional[str] = None):
        self.polls = polls
        self.report_name = report_name
        target = f" for {report_name}" if report_name else ""
        super().__init__(f"Report{target} not ready after {polls} polls")


class LoadFailed(SyncError):
    """Storage transaction failed while replacing a dataset window"""

    def __init__(self, dataset: str, message: str):
        self.dataset = dataset
        super().__init__(f"Failed to load {dataset}: {message}")
