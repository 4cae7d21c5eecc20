"""
GET /results
Returns the LoopReport of the last finished run.
"""
from fastapi import APIRouter, HTTPException

from fixloop.api.run_tracker import tracker
from fixloop.services.results_writer import ResultsWriter

router = APIRouter()


@router.get("/results")
async def get_results():
    if tracker.report is None:
        raise HTTPException(status_code=404, detail="No finished run yet")
    return ResultsWriter.build_payload(tracker.report, tracker.state)
