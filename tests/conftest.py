"""
Shared fixtures: an isolated in-memory database per test and fake report sources.

Environment is set before any adsync module is imported so the cached
settings never point at a real database or log directory.
"""
import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["LOG_DIR"] = ""
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ.pop("DIRECT_TOKEN", None)
os.environ.pop("DIRECT_CLIENT_LOGIN", None)

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from adsync.config import Settings
from adsync.connectors.base_connector import BaseConnector
from adsync.models.base import init_db


class FakeReportSource(BaseConnector):
    """Serves canned TSV bodies by report name; an Exception value is raised instead"""

    def __init__(self, bodies=None, missing=None):
        super().__init__("fake_reports")
        self.bodies = dict(bodies or {})
        self.missing = list(missing or [])
        self.calls = []

    def missing_credentials(self):
        return self.missing

    async def fetch_report(self, report, date_from: date, date_to: date) -> str:
        self.require_credentials()
        self.calls.append((report.name, date_from, date_to))
        body = self.bodies.get(report.name, "")
        if isinstance(body, Exception):
            raise body
        return body


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def settings():
    return Settings(
        direct_token="test-token",
        direct_client_login="test-login",
        log_dir="",
        sync_timezone="UTC",
        sync_interval_hours=12.0,
        sync_refresh_days=7,
        sync_display_refresh_days=7,
        sync_failure_cooldown_minutes=30,
        sync_stale_run_minutes=120,
    )


@pytest.fixture
def fake_source():
    return FakeReportSource
