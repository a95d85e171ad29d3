"""
Incremental report loaders

One generic loader handles every dataset. A load is a full recompute of its
window, not a merge:
  1. fetch the report for [date_from, date_to]
  2. parse + map rows to table records
  3. in ONE transaction: delete every row dated inside the window, then
     insert the fresh batch (insert-or-replace on the natural key)

Re-running a window converges to the same rows, and a failure before commit
leaves the previous snapshot of that window untouched.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from adsync.config import Settings, get_settings
from adsync.connectors.base_connector import BaseConnector
from adsync.connectors.direct_reports import ReportDefinition, ReportFilter
from adsync.exceptions import LoadFailed
from adsync.models.base import SessionLocal
from adsync.models.direct_data import CampaignDaily, DisplayPlacementDaily, SearchQueryDaily
from adsync.services.sync_windows import LOW_FREQUENCY_WINDOW, STANDARD_WINDOW, SyncWindow
from adsync.utils.helpers import chunk_list, click_through_rate, utcnow
from adsync.utils.logger import log
from adsync.utils.report_parsing import parse_number, parse_tsv


def goal_column(goal_id: str, attribution_model: str) -> str:
    """Report column holding conversions for one goal under one attribution model"""
    return f"Conversions_{goal_id}_{attribution_model}"


@dataclass(frozen=True)
class ConversionColumns:
    """Report column names mapped to the purchase / add-to-cart / checkout outcomes"""
    purchase: str
    addtocart: str
    checkout: str

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ConversionColumns":
        settings = settings or get_settings()
        model = settings.direct_attribution_model
        return cls(
            purchase=goal_column(settings.direct_goal_purchase, model),
            addtocart=goal_column(settings.direct_goal_addtocart, model),
            checkout=goal_column(settings.direct_goal_checkout, model),
        )


def _text(row: Dict[str, str], key: str, default: str = "") -> str:
    value = row.get(key)
    return value if value else default


def _base_metrics(row: Dict[str, str], conversions: ConversionColumns) -> Dict[str, Any]:
    impressions = parse_number(row.get("Impressions"))
    clicks = parse_number(row.get("Clicks"))
    return {
        "impressions": int(impressions),
        "clicks": int(clicks),
        "cost": parse_number(row.get("Cost")),
        "purchase": parse_number(row.get(conversions.purchase)),
        "addtocart": parse_number(row.get(conversions.addtocart)),
        "checkout": parse_number(row.get(conversions.checkout)),
        "avg_cpc": parse_number(row.get("AvgCpc")),
        "ctr": click_through_rate(clicks, impressions),
    }


def map_campaign_daily(row: Dict[str, str], conversions: ConversionColumns) -> Dict[str, Any]:
    record = _base_metrics(row, conversions)
    record.update(
        campaign_id=_text(row, "CampaignId"),
        campaign=_text(row, "CampaignName"),
        ad_network_type=_text(row, "AdNetworkType", "UNKNOWN"),
        avg_position=parse_number(row.get("AvgClickPosition")),
    )
    return record


def map_search_query(row: Dict[str, str], conversions: ConversionColumns) -> Dict[str, Any]:
    record = _base_metrics(row, conversions)
    record.update(
        query=_text(row, "Query"),
        campaign=_text(row, "CampaignName"),
        criterion=_text(row, "Criterion"),
        criteria_type=row.get("CriteriaType"),
        avg_click_position=parse_number(row.get("AvgClickPosition")),
        avg_impr_position=parse_number(row.get("AvgImpressionPosition")),
    )
    return record


def map_display_placement(row: Dict[str, str], conversions: ConversionColumns) -> Dict[str, Any]:
    record = _base_metrics(row, conversions)
    record.update(
        campaign=_text(row, "CampaignName"),
        adgroup=_text(row, "AdGroupName"),
        placement=_text(row, "Placement"),
        criteria=_text(row, "Criteria"),
        criteria_type=row.get("CriteriaType"),
    )
    return record


@dataclass(frozen=True)
class DatasetSpec:
    """Everything that differs between datasets: report, table, key and row mapping"""
    name: str
    model: type
    report: ReportDefinition
    key_columns: Tuple[str, ...]
    map_row: Callable[[Dict[str, str], ConversionColumns], Dict[str, Any]]
    window: str = STANDARD_WINDOW


CAMPAIGN_DAILY = DatasetSpec(
    name="campaign_daily",
    model=CampaignDaily,
    report=ReportDefinition(
        name="CampaignDaily",
        report_type="CAMPAIGN_PERFORMANCE_REPORT",
        fields=(
            "Date", "CampaignId", "CampaignName", "AdNetworkType", "Impressions", "Clicks",
            "Cost", "AvgCpc", "AvgClickPosition", "Conversions",
        ),
    ),
    key_columns=("date", "campaign_id", "ad_network_type"),
    map_row=map_campaign_daily,
)

SEARCH_QUERIES = DatasetSpec(
    name="search_queries",
    model=SearchQueryDaily,
    report=ReportDefinition(
        name="SearchQueries",
        report_type="SEARCH_QUERY_PERFORMANCE_REPORT",
        fields=(
            "Date", "Query", "CampaignName", "Criterion", "CriteriaType", "Impressions",
            "Clicks", "Cost", "AvgCpc", "AvgClickPosition", "AvgImpressionPosition", "Conversions",
        ),
        processing_mode="offline",  # Large report; online mode times out upstream
    ),
    key_columns=("date", "campaign", "query", "criterion"),
    map_row=map_search_query,
)

DISPLAY_DATA = DatasetSpec(
    name="display_data",
    model=DisplayPlacementDaily,
    report=ReportDefinition(
        name="DisplayData",
        report_type="CRITERIA_PERFORMANCE_REPORT",
        fields=(
            "Date", "CampaignName", "AdGroupName", "Placement", "Criteria", "CriteriaType",
            "Impressions", "Clicks", "Cost", "AvgCpc", "Conversions",
        ),
        filter=ReportFilter(field="AdNetworkType", operator="EQUALS", values=("AD_NETWORK",)),
    ),
    key_columns=("date", "campaign", "adgroup", "placement", "criteria"),
    map_row=map_display_placement,
    window=LOW_FREQUENCY_WINDOW,
)

# Fixed load order: primary, secondary, tertiary
DEFAULT_DATASETS: Tuple[DatasetSpec, ...] = (CAMPAIGN_DAILY, SEARCH_QUERIES, DISPLAY_DATA)


def _parse_report_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


class IncrementalLoader:
    """Replaces one dataset's rows for a date window with a fresh upstream snapshot"""

    INSERT_BATCH_SIZE = 500

    def __init__(
        self,
        spec: DatasetSpec,
        connector: BaseConnector,
        session_factory: Optional[sessionmaker] = None,
        conversions: Optional[ConversionColumns] = None,
    ):
        self.spec = spec
        self.connector = connector
        self.session_factory = session_factory or SessionLocal
        self.conversions = conversions or ConversionColumns.from_settings()

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def window_class(self) -> str:
        return self.spec.window

    async def load(self, window: SyncWindow) -> int:
        """
        Fetch, parse and atomically replace the window.

        Returns:
            Number of rows written for the window

        Raises:
            FetchError / ConfigurationMissing: propagated from the connector
            LoadFailed: storage error; the window keeps its previous rows
        """
        with log.contextualize(dataset=self.spec.name):
            report_body = await self.connector.fetch_report(
                self.spec.report, window.date_from, window.date_to
            )
            records = self.build_records(parse_tsv(report_body), window)
            self.replace_window(window, records)

            log.info(
                f"{self.spec.name}: replaced {window.date_from} to {window.date_to} "
                f"with {len(records)} rows"
            )
            return len(records)

    def build_records(self, rows: Iterable[Dict[str, str]], window: SyncWindow) -> List[Dict[str, Any]]:
        """
        Map report rows to table records, one per natural key.

        Later rows win over earlier rows with the same key. Rows with an
        unreadable date or a date outside the window are dropped.
        """
        records: Dict[Tuple, Dict[str, Any]] = {}
        synced_at = utcnow()
        bad_dates = 0
        outside = 0
        duplicates = 0

        for row in rows:
            day = _parse_report_date(row.get("Date"))
            if day is None:
                bad_dates += 1
                continue
            if day not in window:
                outside += 1
                continue

            record = self.spec.map_row(row, self.conversions)
            record["date"] = day
            record["synced_at"] = synced_at

            key = tuple(record[column] for column in self.spec.key_columns)
            if key in records:
                duplicates += 1
            records[key] = record

        if bad_dates:
            log.warning(f"{self.spec.name}: skipped {bad_dates} rows with an unreadable Date")
        if outside:
            log.warning(f"{self.spec.name}: skipped {outside} rows dated outside {window.date_from}..{window.date_to}")
        if duplicates:
            log.warning(f"{self.spec.name}: {duplicates} duplicate keys in report, kept the last row")

        return list(records.values())

    def replace_window(self, window: SyncWindow, records: Sequence[Dict[str, Any]]) -> None:
        """Delete the window and insert `records` in a single transaction"""
        table = self.spec.model.__table__
        db = self.session_factory()
        try:
            db.execute(
                delete(table).where(
                    table.c.date >= window.date_from,
                    table.c.date <= window.date_to,
                )
            )
            statement = self._insert_statement(db.get_bind().dialect.name)
            for batch in chunk_list(list(records), self.INSERT_BATCH_SIZE):
                db.execute(statement, batch)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"{self.spec.name}: window replace rolled back: {e}")
            raise LoadFailed(self.spec.name, str(e)) from e
        finally:
            db.close()

    def _insert_statement(self, dialect_name: str):
        """INSERT that replaces on natural-key conflict where the dialect supports it"""
        table = self.spec.model.__table__
        if dialect_name == "sqlite":
            statement = sqlite.insert(table)
        elif dialect_name == "postgresql":
            statement = postgresql.insert(table)
        else:
            # Batch is already unique per key and the window was just cleared
            return insert(table)

        excluded = {
            column.name: statement.excluded[column.name]
            for column in table.columns
            if column.name not in self.spec.key_columns and not column.primary_key
        }
        return statement.on_conflict_do_update(
            index_elements=list(self.spec.key_columns),
            set_=excluded,
        )


def build_default_loaders(
    connector: BaseConnector,
    session_factory: Optional[sessionmaker] = None,
    conversions: Optional[ConversionColumns] = None,
    datasets: Sequence[DatasetSpec] = DEFAULT_DATASETS,
) -> List[IncrementalLoader]:
    """Loaders for every dataset, in load order"""
    return [
        IncrementalLoader(spec, connector, session_factory, conversions)
        for spec in datasets
    ]
