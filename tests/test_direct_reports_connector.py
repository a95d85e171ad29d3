"""
Reports API connector tests.

The poll loop is driven by a scripted transport and a recording sleep, so
queued/ready/rejected sequences run instantly and deterministically.
"""
import asyncio
import xml.etree.ElementTree as ET
from datetime import date

import aiohttp
import pytest

from adsync.connectors.direct_reports import (
    REPORTS_NAMESPACE,
    DirectReportsConnector,
    ReportResponse,
    ReportState,
    build_report_definition,
    classify_status,
)
from adsync.exceptions import ConfigurationMissing, FetchError, FetchRejected, RetryExhausted
from adsync.services.report_loaders import CAMPAIGN_DAILY, DISPLAY_DATA, SEARCH_QUERIES

NS = {"r": REPORTS_NAMESPACE}
DATE_FROM = date(2026, 10, 10)
DATE_TO = date(2026, 10, 17)
READY_BODY = "Date\tClicks\n2026-10-10\t5\n"


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


class ScriptedTransport:
    """Returns (or raises) the scripted responses in order"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def __call__(self, body, headers):
        self.requests.append((body, headers))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingSleep:
    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        self.waits.append(seconds)


def _connector(transport, sleep, **kwargs):
    kwargs.setdefault("token", "tok")
    kwargs.setdefault("client_login", "login")
    kwargs.setdefault("max_polls", 5)
    kwargs.setdefault("default_retry_seconds", 10)
    return DirectReportsConnector(transport=transport, sleep=sleep, **kwargs)


# ---------------------------------------------------------------------------
# Status handling
# ---------------------------------------------------------------------------

def test_classify_status():
    assert classify_status(200) is ReportState.READY
    assert classify_status(201) is ReportState.QUEUED
    assert classify_status(202) is ReportState.QUEUED
    assert classify_status(400) is ReportState.FAILED
    assert classify_status(500) is ReportState.FAILED


class TestRetryIn:
    def test_header_value(self):
        assert ReportResponse(201, headers={"retryIn": "3"}).retry_in(10) == 3

    def test_header_name_is_case_insensitive(self):
        assert ReportResponse(202, headers={"RETRYIN": "7"}).retry_in(10) == 7

    def test_missing_header_uses_default(self):
        assert ReportResponse(201).retry_in(10) == 10

    def test_garbled_header_uses_default(self):
        assert ReportResponse(201, headers={"retryIn": "soon"}).retry_in(10) == 10

    def test_negative_header_clamped(self):
        assert ReportResponse(201, headers={"retryIn": "-5"}).retry_in(10) == 0


# ---------------------------------------------------------------------------
# Poll loop
# ---------------------------------------------------------------------------

def test_ready_immediately():
    transport = ScriptedTransport(ReportResponse(200, READY_BODY))
    sleep = RecordingSleep()

    body = _run(_connector(transport, sleep).fetch_report(CAMPAIGN_DAILY.report, DATE_FROM, DATE_TO))

    assert body == READY_BODY
    assert len(transport.requests) == 1
    assert sleep.waits == []


def test_queued_then_ready_waits_as_instructed():
    transport = ScriptedTransport(
        ReportResponse(201, headers={"retryIn": "3"}),
        ReportResponse(202),
        ReportResponse(200, READY_BODY),
    )
    sleep = RecordingSleep()
    connector = _connector(transport, sleep)

    body = _run(connector.fetch_report(CAMPAIGN_DAILY.report, DATE_FROM, DATE_TO))

    assert body == READY_BODY
    assert sleep.waits == [3, 10]
    assert len(transport.requests) == 3
    # Same definition (and ReportName) on every poll
    assert len({request_body for request_body, _ in transport.requests}) == 1

    status = connector.get_status()
    assert status["fetch_count"] == 1
    assert status["poll_count"] == 2
    assert status["configured"] is True


def test_poll_ceiling_raises_retry_exhausted():
    transport = ScriptedTransport(*[ReportResponse(201, headers={"retryIn": "1"}) for _ in range(3)])
    sleep = RecordingSleep()

    with pytest.raises(RetryExhausted) as exc_info:
        _run(_connector(transport, sleep, max_polls=3).fetch_report(CAMPAIGN_DAILY.report, DATE_FROM, DATE_TO))

    assert exc_info.value.polls == 3
    assert len(transport.requests) == 3
    # No pointless wait after the final queued answer
    assert sleep.waits == [1, 1]


def test_retry_exhausted_is_distinct_from_rejection():
    assert issubclass(RetryExhausted, FetchError)
    assert not issubclass(RetryExhausted, FetchRejected)


def test_error_status_is_rejected_without_retry():
    transport = ScriptedTransport(ReportResponse(400, "bad field name"))
    sleep = RecordingSleep()

    with pytest.raises(FetchRejected) as exc_info:
        _run(_connector(transport, sleep).fetch_report(CAMPAIGN_DAILY.report, DATE_FROM, DATE_TO))

    assert exc_info.value.status == 400
    assert str(exc_info.value) == "API error 400: bad field name"
    assert len(transport.requests) == 1
    assert sleep.waits == []


def test_missing_credentials_fail_before_any_request():
    transport = ScriptedTransport(ReportResponse(200, READY_BODY))
    connector = _connector(transport, RecordingSleep(), token="")

    with pytest.raises(ConfigurationMissing) as exc_info:
        _run(connector.fetch_report(CAMPAIGN_DAILY.report, DATE_FROM, DATE_TO))

    assert exc_info.value.missing == ["direct_token"]
    assert transport.requests == []
    assert connector.is_configured() is False


# ---------------------------------------------------------------------------
# Transport failures
# ---------------------------------------------------------------------------

def test_connection_errors_are_retried():
    transport = ScriptedTransport(
        aiohttp.ClientConnectionError("reset"),
        aiohttp.ClientConnectionError("reset"),
        ReportResponse(200, READY_BODY),
    )
    sleep = RecordingSleep()

    body = _run(_connector(transport, sleep).fetch_report(CAMPAIGN_DAILY.report, DATE_FROM, DATE_TO))

    assert body == READY_BODY
    assert len(sleep.waits) == 2
    assert 2.0 <= sleep.waits[0] <= 2.5
    assert 4.0 <= sleep.waits[1] <= 5.0


def test_persistent_connection_errors_become_fetch_error():
    transport = ScriptedTransport(*[aiohttp.ClientConnectionError("refused") for _ in range(3)])

    with pytest.raises(FetchError) as exc_info:
        _run(_connector(transport, RecordingSleep()).fetch_report(CAMPAIGN_DAILY.report, DATE_FROM, DATE_TO))

    assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)
    assert len(transport.requests) == 3


# ---------------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------------

def test_request_headers():
    transport = ScriptedTransport(ReportResponse(200, READY_BODY))
    _run(_connector(transport, RecordingSleep()).fetch_report(SEARCH_QUERIES.report, DATE_FROM, DATE_TO))

    _, headers = transport.requests[0]
    assert headers["Authorization"] == "Bearer tok"
    assert headers["Client-Login"] == "login"
    assert headers["processingMode"] == "offline"
    assert headers["returnMoneyInMicros"] == "false"
    assert headers["skipReportHeader"] == "true"
    assert headers["skipReportSummary"] == "true"


def test_report_definition_xml():
    xml = build_report_definition(
        DISPLAY_DATA.report, DATE_FROM, DATE_TO,
        goals=["111", "222"], attribution_model="LYDC", report_name="DisplayData_1",
    )
    root = ET.fromstring(xml)

    assert root.find("r:SelectionCriteria/r:DateFrom", NS).text == "2026-10-10"
    assert root.find("r:SelectionCriteria/r:DateTo", NS).text == "2026-10-17"
    assert root.find("r:SelectionCriteria/r:Filter/r:Field", NS).text == "AdNetworkType"
    assert root.find("r:SelectionCriteria/r:Filter/r:Operator", NS).text == "EQUALS"
    assert [v.text for v in root.findall("r:SelectionCriteria/r:Filter/r:Values", NS)] == ["AD_NETWORK"]
    assert [g.text for g in root.findall("r:Goals", NS)] == ["111", "222"]
    assert root.find("r:AttributionModels", NS).text == "LYDC"
    assert tuple(f.text for f in root.findall("r:FieldNames", NS)) == DISPLAY_DATA.report.fields
    assert root.find("r:ReportName", NS).text == "DisplayData_1"
    assert root.find("r:ReportType", NS).text == "CRITERIA_PERFORMANCE_REPORT"
    assert root.find("r:DateRangeType", NS).text == "CUSTOM_DATE"
    assert root.find("r:Format", NS).text == "TSV"


def test_report_definition_without_filter():
    xml = build_report_definition(
        CAMPAIGN_DAILY.report, DATE_FROM, DATE_TO,
        goals=[], attribution_model="LYDC", report_name="CampaignDaily_1",
    )
    root = ET.fromstring(xml)
    assert root.find("r:SelectionCriteria/r:Filter", NS) is None
    assert root.findall("r:Goals", NS) == []
