"""
POST /run-loop
Accepts a source directory and optional overrides, then starts the fix
loop in the background. Poll GET /status for progress and GET /results
for the final report.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, field_validator

from fixloop.agents.loop_controller import run_loop
from fixloop.api.run_tracker import tracker
from fixloop.core.config import RESULTS_PATH

logger = logging.getLogger(__name__)

router = APIRouter()


class RunLoopRequest(BaseModel):
    source_dir: str
    entry_point: Optional[str] = None
    max_iterations: Optional[int] = Field(default=None, ge=1)
    worker_limit: Optional[int] = Field(default=None, ge=1)
    headless: Optional[bool] = None
    results_path: str = RESULTS_PATH

    @field_validator("source_dir")
    @classmethod
    def validate_source_dir(cls, v: str) -> str:
        if not Path(v).is_dir():
            raise ValueError(f"Source directory not found: {v}")
        return v


class RunLoopResponse(BaseModel):
    message: str
    source_dir: str


async def _run_in_background(request: RunLoopRequest) -> None:
    overrides = {
        "entry_point": request.entry_point,
        "max_iterations": request.max_iterations,
        "worker_limit": request.worker_limit,
        "headless": request.headless,
    }
    try:
        report = await run_loop(request.source_dir, overrides, on_state=tracker.update_state)
        tracker.finish(report, request.results_path)
    except Exception as exc:
        logger.error("Background loop run failed: %s", exc, exc_info=True)
        tracker.error = str(exc)


@router.post("/run-loop", response_model=RunLoopResponse, status_code=202)
async def start_run(request: RunLoopRequest):
    if tracker.running:
        raise HTTPException(status_code=409, detail="A loop run is already in progress")

    tracker.reset()
    tracker.task = asyncio.create_task(_run_in_background(request))
    logger.info("Loop run started for %s", request.source_dir)
    return RunLoopResponse(message="Loop run started", source_dir=request.source_dir)
