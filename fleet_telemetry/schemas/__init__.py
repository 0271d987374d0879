# fleet_telemetry/schemas/__init__.py
from fleet_telemetry.schemas.live_session import (
    ComplianceStatus,
    GeoPoint,
    DeviceInfo,
    SlotState,
    HoursState,
    HourlyBucket,
    AdPlayback,
    QrScan,
    AdPerformance,
    AdScanSummary,
    DailyCounters,
    LiveSessionState,
    LiveSessionSnapshotRead,
)
from fleet_telemetry.schemas.telemetry import (
    LocationEvent,
    AdPlaybackEvent,
    QrScanPayload,
    QrScanEvent,
    StatusEvent,
    TelemetryEvent,
    TelemetryBatch,
    IngestResult,
)
from fleet_telemetry.schemas.timeline import (
    DailySummary,
    DailyRecord,
    LifetimeTotals,
    TimelineDocument,
    TimelinePage,
    UpdateTrackingRead,
)
from fleet_telemetry.schemas.rollup import (
    RollupTotals,
    CampaignBreakdown,
    VehicleBreakdown,
    AdvertiserRollupRead,
)
from fleet_telemetry.schemas.placement import (
    CampaignPlacementCreate,
    CampaignPlacementUpdate,
    CampaignPlacementRead,
)
from fleet_telemetry.schemas.jobs import (
    JobRunReport,
    JobStatus,
    SchedulerStatus,
)
