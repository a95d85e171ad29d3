"""
Base connector class for upstream report sources
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional

from adsync.exceptions import ConfigurationMissing
from adsync.utils.logger import log


class BaseConnector(ABC):
    """Base class for all report source connectors"""

    # Transport retry configuration (can be overridden by subclasses)
    RETRY_BASE_DELAY = 2.0  # seconds
    RETRY_MAX_DELAY = 30.0  # seconds

    def __init__(self, name: str):
        self.name = name
        self.last_fetch: Optional[datetime] = None
        self.fetch_count = 0
        self.error_count = 0
        self.poll_count = 0  # Total "not ready yet" polls across all fetches

    @abstractmethod
    def missing_credentials(self) -> Iterable[str]:
        """Names of required settings that are empty"""

    @abstractmethod
    async def fetch_report(self, report: Any, date_from: date, date_to: date) -> str:
        """Fetch one report body for an inclusive date window"""

    def is_configured(self) -> bool:
        return not list(self.missing_credentials())

    def require_credentials(self):
        """Fail fast before any network call when credentials are absent"""
        missing = list(self.missing_credentials())
        if missing:
            log.error(f"{self.name} is not configured: missing {', '.join(missing)}")
            raise ConfigurationMissing(missing)

    def get_status(self) -> Dict[str, Any]:
        """Get connector status"""
        return {
            "name": self.name,
            "configured": self.is_configured(),
            "last_fetch": self.last_fetch.isoformat() if self.last_fetch else None,
            "fetch_count": self.fetch_count,
            "poll_count": self.poll_count,
            "error_count": self.error_count,
        }
