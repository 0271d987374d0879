# fleet_telemetry/api/routes/jobs.py
from fastapi import APIRouter, Depends

from fleet_telemetry.api.deps import get_scheduler
from fleet_telemetry.schemas.jobs import JobRunReport, SchedulerStatus
from fleet_telemetry.services.scheduler import JobScheduler

router = APIRouter()


@router.get("/status", response_model=SchedulerStatus)
async def jobs_status(scheduler: JobScheduler = Depends(get_scheduler)):
    return scheduler.status()


@router.post("/hours-tick", response_model=JobRunReport)
async def trigger_hours_tick(scheduler: JobScheduler = Depends(get_scheduler)):
    return await scheduler.trigger("hours-tick")


@router.post("/archive", response_model=JobRunReport)
async def trigger_archive(scheduler: JobScheduler = Depends(get_scheduler)):
    return await scheduler.trigger("archive")


@router.post("/rollup", response_model=JobRunReport)
async def trigger_rollup(scheduler: JobScheduler = Depends(get_scheduler)):
    return await scheduler.trigger("rollup")
