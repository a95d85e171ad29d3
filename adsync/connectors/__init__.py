"""Report source connectors"""

from adsync.connectors.base_connector import BaseConnector
from adsync.connectors.direct_reports import DirectReportsConnector, ReportDefinition, ReportFilter

__all__ = [
    "BaseConnector",
    "DirectReportsConnector",
    "ReportDefinition",
    "ReportFilter"
]
