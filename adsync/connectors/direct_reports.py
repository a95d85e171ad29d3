"""
Yandex Direct Reports API connector

Reports are generated asynchronously upstream. Every request carries the
full report definition; the API answers with one of:
  - 200        report is ready, body is TSV
  - 201 / 202  report queued or being built, ask again after `retryIn` seconds
  - other      request rejected (bad definition, auth, quota) - not retried

The same definition (including its ReportName) is re-sent on every poll so
the API can match it to the report it is already building.
"""
import asyncio
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp

from adsync.config import get_settings
from adsync.connectors.base_connector import BaseConnector
from adsync.exceptions import FetchError, FetchRejected, RetryExhausted
from adsync.utils.helpers import utcnow
from adsync.utils.logger import log
from adsync.utils.retry import RetryContext

REPORTS_NAMESPACE = "http://api.direct.yandex.com/v5/reports"

READY_STATUSES = (200,)
QUEUED_STATUSES = (201, 202)


class ReportState(str, Enum):
    REQUESTING = "requesting"
    QUEUED = "queued"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ReportFilter:
    field: str
    operator: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class ReportDefinition:
    """Per-dataset report request (fields, type, filter, processing mode)"""
    name: str
    report_type: str
    fields: Tuple[str, ...]
    filter: Optional[ReportFilter] = None
    processing_mode: str = "auto"


@dataclass
class ReportResponse:
    """Status, headers and body of one reports API call"""
    status: int
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def retry_in(self, default: int) -> int:
        """Server-suggested wait in seconds, or `default` when absent/garbled"""
        for key, value in self.headers.items():
            if key.lower() == "retryin":
                try:
                    return max(0, int(value))
                except (TypeError, ValueError):
                    return default
        return default


Transport = Callable[[str, Dict[str, str]], Awaitable[ReportResponse]]


def classify_status(status: int) -> ReportState:
    if status in READY_STATUSES:
        return ReportState.READY
    if status in QUEUED_STATUSES:
        return ReportState.QUEUED
    return ReportState.FAILED


def build_report_definition(
    report: ReportDefinition,
    date_from: date,
    date_to: date,
    goals: Iterable[str],
    attribution_model: str,
    report_name: str,
) -> str:
    """
    Render the ReportDefinition XML document.

    Element order follows the API schema: SelectionCriteria, Goals,
    AttributionModels, FieldNames, ReportName, ReportType, DateRangeType,
    Format, IncludeVAT, IncludeDiscount.
    """
    root = ET.Element("ReportDefinition", {"xmlns": REPORTS_NAMESPACE})

    criteria = ET.SubElement(root, "SelectionCriteria")
    ET.SubElement(criteria, "DateFrom").text = str(date_from)
    ET.SubElement(criteria, "DateTo").text = str(date_to)
    if report.filter:
        flt = ET.SubElement(criteria, "Filter")
        ET.SubElement(flt, "Field").text = report.filter.field
        ET.SubElement(flt, "Operator").text = report.filter.operator
        for value in report.filter.values:
            ET.SubElement(flt, "Values").text = value

    for goal in goals:
        ET.SubElement(root, "Goals").text = str(goal)
    ET.SubElement(root, "AttributionModels").text = attribution_model

    for name in report.fields:
        ET.SubElement(root, "FieldNames").text = name

    ET.SubElement(root, "ReportName").text = report_name
    ET.SubElement(root, "ReportType").text = report.report_type
    ET.SubElement(root, "DateRangeType").text = "CUSTOM_DATE"
    ET.SubElement(root, "Format").text = "TSV"
    ET.SubElement(root, "IncludeVAT").text = "NO"
    ET.SubElement(root, "IncludeDiscount").text = "NO"

    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


class DirectReportsConnector(BaseConnector):
    """
    Fetches TSV reports from the Yandex Direct Reports API v5.

    `max_polls` bounds the number of requests made for one report. Scheduled
    syncs keep it short; long historical imports can pass a larger value.
    `transport` and `sleep` are injectable so the poll loop can be driven
    without network access or real delays.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        client_login: Optional[str] = None,
        goals: Optional[List[str]] = None,
        attribution_model: Optional[str] = None,
        max_polls: Optional[int] = None,
        default_retry_seconds: Optional[int] = None,
        api_url: Optional[str] = None,
        transport: Optional[Transport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        super().__init__("yandex_direct")
        settings = get_settings()

        self.token = token if token is not None else settings.direct_token
        self.client_login = client_login if client_login is not None else settings.direct_client_login
        self.goals = list(goals) if goals is not None else [
            settings.direct_goal_purchase,
            settings.direct_goal_checkout,
            settings.direct_goal_addtocart,
        ]
        self.attribution_model = attribution_model or settings.direct_attribution_model
        self.max_polls = max(1, max_polls if max_polls is not None else settings.report_max_polls)
        self.default_retry_seconds = (
            default_retry_seconds if default_retry_seconds is not None
            else settings.report_default_retry_seconds
        )
        self.api_url = api_url or settings.direct_api_url
        self.request_timeout = settings.direct_request_timeout_seconds
        self.network_retries = settings.direct_network_retries

        self._transport = transport or self._post_report
        self._sleep = sleep or asyncio.sleep

    def missing_credentials(self) -> List[str]:
        missing = []
        if not self.token:
            missing.append("direct_token")
        if not self.client_login:
            missing.append("direct_client_login")
        return missing

    def _headers(self, report: ReportDefinition) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Client-Login": self.client_login,
            "Accept-Language": "en",
            "processingMode": report.processing_mode or "auto",
            "returnMoneyInMicros": "false",
            "skipReportHeader": "true",
            "skipReportSummary": "true",
        }

    async def fetch_report(self, report: ReportDefinition, date_from: date, date_to: date) -> str:
        """
        Request a report and poll until it is ready.

        Args:
            report: Dataset report definition
            date_from: First day of the window (inclusive)
            date_to: Last day of the window (inclusive)

        Returns:
            TSV report body (header row + data rows)

        Raises:
            ConfigurationMissing: token or client login not set
            FetchRejected: API answered with a non-retryable status
            RetryExhausted: report still queued after `max_polls` requests
            FetchError: transport failure outlived the network retries
        """
        self.require_credentials()

        report_name = f"{report.name}_{int(time.time() * 1000)}"
        body = build_report_definition(
            report, date_from, date_to, self.goals, self.attribution_model, report_name
        )
        headers = self._headers(report)

        log.info(f"Requesting {report.report_type} ({report.name}) for {date_from} to {date_to}")

        polls = 0
        state = ReportState.REQUESTING
        response = None

        while True:
            if state is ReportState.REQUESTING:
                response = await self._send(body, headers)
                state = classify_status(response.status)

            elif state is ReportState.QUEUED:
                polls += 1
                self.poll_count += 1
                if polls >= self.max_polls:
                    self.error_count += 1
                    log.error(f"{report.name}: report not ready after {polls} polls, giving up")
                    raise RetryExhausted(polls, report.name)

                wait = response.retry_in(self.default_retry_seconds)
                log.debug(
                    f"{report.name}: queued (HTTP {response.status}), "
                    f"retrying in {wait}s [{polls}/{self.max_polls}]"
                )
                await self._sleep(wait)
                state = ReportState.REQUESTING

            elif state is ReportState.READY:
                self.fetch_count += 1
                self.last_fetch = utcnow()
                log.info(f"{report.name}: report ready after {polls} polls ({len(response.body)} bytes)")
                return response.body

            else:
                self.error_count += 1
                log.error(f"{report.name}: API rejected report request with HTTP {response.status}")
                raise FetchRejected(response.status, response.body)

    async def _send(self, body: str, headers: Dict[str, str]) -> ReportResponse:
        """One report request, retrying connection-level failures only"""
        async with RetryContext(
            max_attempts=self.network_retries,
            base_delay=self.RETRY_BASE_DELAY,
            max_delay=self.RETRY_MAX_DELAY,
            sleep=self._sleep,
        ) as ctx:
            try:
                response = await ctx.execute(self._transport, body, headers)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                self.error_count += 1
                raise FetchError(
                    f"Reports API request failed after {ctx.stats.attempts} attempts: {e}"
                ) from e

        if ctx.stats.attempts > 1:
            log.info(f"Reports API request recovered after retries: {ctx.stats.to_dict()}")
        return response

    async def _post_report(self, body: str, headers: Dict[str, str]) -> ReportResponse:
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                self.api_url,
                data=body.encode("utf-8"),
                headers=headers,
            ) as response:
                text = await response.text(encoding="utf-8")
                return ReportResponse(
                    status=response.status,
                    body=text,
                    headers=dict(response.headers),
                )
