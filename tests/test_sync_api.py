"""
HTTP surface tests: /sync routes, /health and the request-driven trigger.

The app's service dependency is overridden with one wired to the per-test
in-memory database and a fake report source.
"""
import asyncio
import threading
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from adsync.main import app
from adsync.services.report_loaders import ConversionColumns, build_default_loaders
from adsync.services.report_sync_service import ReportSyncService, get_report_sync_service
from adsync.services.sync_status_store import SyncRunHistory, SyncStatusStore
from adsync.utils.helpers import utcnow

CAMPAIGN_ONLY = {"CampaignDaily": "Date\tCampaignId\n", "SearchQueries": "", "DisplayData": ""}


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def make_service(session_factory, settings):
    def factory(source):
        service = ReportSyncService(
            status_store=SyncStatusStore(session_factory),
            loaders=build_default_loaders(source, session_factory, ConversionColumns.from_settings(settings)),
            history=SyncRunHistory(session_factory),
            settings=settings,
            connector=source,
        )
        app.dependency_overrides[get_report_sync_service] = lambda: service
        return service
    return factory


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------

def test_health(make_service, fake_source):
    source = fake_source(CAMPAIGN_ONLY)
    make_service(source)

    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    # Probes never start a sync
    assert source.calls == []


# ---------------------------------------------------------------------------
# /sync/status and /sync/logs
# ---------------------------------------------------------------------------

def test_status_returns_row(make_service, fake_source):
    make_service(fake_source(CAMPAIGN_ONLY))

    with TestClient(app) as client:
        response = client.get("/sync/status")

    assert response.status_code == 200
    data = response.json()
    assert data["last_status"] == "never"
    assert data["in_progress"] is False
    assert data["running"] is False


def test_logs_list_recent_runs(make_service, fake_source):
    service = make_service(fake_source(CAMPAIGN_ONLY))
    _run(service.run("manual"))

    with TestClient(app) as client:
        response = client.get("/sync/logs", params={"hours": 24, "limit": 10})

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    assert data["logs"][0]["status"] == "completed"
    assert data["logs"][0]["trigger"] == "manual"


# ---------------------------------------------------------------------------
# /sync/trigger
# ---------------------------------------------------------------------------

def test_trigger_not_due(make_service, fake_source):
    source = fake_source(CAMPAIGN_ONLY)
    service = make_service(source)
    service.status_store.write(last_status="completed", last_sync_at=utcnow() - timedelta(hours=1))

    with TestClient(app) as client:
        response = client.post("/sync/trigger")

    assert response.status_code == 200
    assert response.json() == {"status": "not_due"}
    assert source.calls == []


def test_trigger_force_then_conflict(make_service, fake_source):
    gate = threading.Event()

    class GatedSource(fake_source):
        async def fetch_report(self, report, date_from, date_to):
            while not gate.is_set():
                await asyncio.sleep(0.01)
            return await super().fetch_report(report, date_from, date_to)

    source = GatedSource(CAMPAIGN_ONLY)
    service = make_service(source)
    service.status_store.write(last_status="completed", last_sync_at=utcnow() - timedelta(hours=1))

    with TestClient(app) as client:
        first = client.post("/sync/trigger", params={"force": "true"})
        second = client.post("/sync/trigger", params={"force": "true"})
        gate.set()

    assert first.status_code == 202
    assert first.json()["status"] == "started"
    assert second.status_code == 409
    assert second.json() == {"status": "already_running"}

    # Shutdown joined the single run
    assert len(source.calls) == 3
    assert service.status_store.read().last_status == "completed"


def test_trigger_without_credentials_is_500(make_service, fake_source):
    source = fake_source(CAMPAIGN_ONLY, missing=["direct_token"])
    service = make_service(source)

    with TestClient(app) as client:
        response = client.post("/sync/trigger", params={"force": "true"})

    assert response.status_code == 500
    assert "DIRECT_TOKEN" in response.json()["detail"]
    assert service.status_store.read().last_status == "never"


# ---------------------------------------------------------------------------
# Request-driven trigger
# ---------------------------------------------------------------------------

def test_dashboard_request_starts_due_sync(make_service, fake_source):
    source = fake_source(CAMPAIGN_ONLY)
    service = make_service(source)

    with TestClient(app) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert [name for name, _, _ in source.calls] == ["CampaignDaily", "SearchQueries", "DisplayData"]
    status = service.status_store.read()
    assert status.last_status == "completed"
    assert status.last_sync_at is not None


def test_dashboard_request_skips_fresh_data(make_service, fake_source):
    source = fake_source(CAMPAIGN_ONLY)
    service = make_service(source)
    service.status_store.write(last_status="completed", last_sync_at=utcnow() - timedelta(minutes=5))

    with TestClient(app) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert source.calls == []
