"""Database models for the ad report sync"""

from adsync.models.direct_data import (
    CampaignDaily,
    SearchQueryDaily,
    DisplayPlacementDaily
)

from adsync.models.sync_status import (
    SyncState,
    SyncStatus,
    SyncRunLog
)
