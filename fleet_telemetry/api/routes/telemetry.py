# fleet_telemetry/api/routes/telemetry.py
from typing import Any, Dict, List, Union

from fastapi import APIRouter, Depends

from fleet_telemetry.api.deps import get_ingestor
from fleet_telemetry.schemas.telemetry import IngestResult, TelemetryBatch
from fleet_telemetry.services.ingestion import TelemetryIngestor

router = APIRouter()


@router.post("/events", response_model=IngestResult)
async def ingest_events(
    body: Union[TelemetryBatch, List[Dict[str, Any]]],
    ingestor: TelemetryIngestor = Depends(get_ingestor),
):
    """
    Batch ingestion. Each event is validated on its own: invalid ones are
    counted as rejected, the rest are applied.
    """
    events = body.events if isinstance(body, TelemetryBatch) else body
    return await ingestor.ingest_batch(events)
