"""
Ingestion run trigger and status endpoints.

POST /api/v1/runs/trigger  — start an ingestion run (background task)
GET  /api/v1/runs/{run_id} — poll run status
"""

import uuid

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from harvester.api.v1.deps import AuthenticatedUser, Job, Runs
from harvester.core.logging import get_logger
from harvester.core.security import limiter
from harvester.schemas.schemas import RunStatusResponse, TriggerResponse
from harvester.services.ingestion_job import IngestionJob
from harvester.services.run_registry import RunRegistry

router = APIRouter(prefix="/runs", tags=["runs"])
logger = get_logger(__name__)


async def execute_run(job: IngestionJob, runs: RunRegistry, run_id: str) -> None:
    """Background task: one full ingestion run, outcome recorded in the registry."""
    try:
        summary = await job.run(run_id)
    except Exception as e:
        logger.error("ingestion_run_failed", run_id=run_id, error=str(e))
        runs.fail(run_id, str(e))
        return
    runs.complete(run_id, summary)
    logger.info("ingestion_run_finished", run_id=run_id, errors=len(summary.errors))


@router.post("/trigger", response_model=TriggerResponse)
@limiter.limit("10/minute")
async def trigger_run(
    request: Request,
    background_tasks: BackgroundTasks,
    job: Job,
    runs: Runs,
    _api_key: AuthenticatedUser,
) -> TriggerResponse:
    """Start an ingestion run. Returns immediately with a run_id for polling."""
    if runs.is_running():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An ingestion run is already in progress",
        )
    run_id = str(uuid.uuid4())
    runs.start(run_id)
    background_tasks.add_task(execute_run, job, runs, run_id)
    logger.info("ingestion_run_triggered", run_id=run_id, trigger="manual")
    return TriggerResponse(run_id=run_id)


@router.get("/{run_id}", response_model=RunStatusResponse)
async def get_run_status(run_id: str, runs: Runs, _api_key: AuthenticatedUser) -> RunStatusResponse:
    run = runs.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return run
