"""
Run Tracker
===========
In-process record of the current (or last) loop run, shared by the
/run-loop, /status and /results endpoints. One run at a time.
"""
import asyncio
import logging
from typing import Optional

from fixloop.core.config import RESULTS_PATH
from fixloop.models.loop_report import LoopReport
from fixloop.services.results_writer import ResultsWriter
from fixloop.state.loop_state import LoopRunState

logger = logging.getLogger(__name__)


class RunTracker:
    def __init__(self) -> None:
        self.state: Optional[LoopRunState] = None
        self.report: Optional[LoopReport] = None
        self.task: Optional[asyncio.Task] = None
        self.error: str = ""

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    def update_state(self, state: LoopRunState) -> None:
        self.state = state

    def reset(self) -> None:
        self.state = None
        self.report = None
        self.error = ""

    def finish(self, report: LoopReport, results_path: str = RESULTS_PATH) -> None:
        self.report = report
        ResultsWriter.write_results(report, results_path, self.state)


tracker = RunTracker()
