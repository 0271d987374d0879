# fleet_telemetry/schemas/jobs.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class JobRunReport(BaseModel):
    job: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    # another run was still in flight
    skipped: bool = False
    processed: int = 0
    failed: int = 0
    details: Dict[str, int] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class JobStatus(BaseModel):
    job: str
    running: bool
    interval_seconds: int
    loop_active: bool = False
    last_run: Optional[JobRunReport] = None


class SchedulerStatus(BaseModel):
    enabled: bool
    jobs: List[JobStatus] = Field(default_factory=list)
