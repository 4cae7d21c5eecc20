"""
Error Record Model
==================
Pydantic model for one deduplicated, normalized failure observation.
This is the contract between the detection layer and everything downstream.

Fields:
    id                   — 16-hex content hash of normalized message + location
    kind                 — Runtime / Console / Functional / Timeout
    component            — script stem, check name or "navigation"
    message              — normalized message (volatile substrings removed)
    location             — tree-relative file + 1-based line, when known
    first_seen_iteration — iteration that first observed the signature
    last_seen_iteration  — most recent iteration that observed it
    occurrence_count     — number of observation windows that saw it (never decreases)
    scenario             — scenario whose replay reproduces it
    last_diagnostics     — raw text / stack from the latest sighting, for operators
"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel


class ErrorKind(str, Enum):
    RUNTIME = "Runtime"
    CONSOLE = "Console"
    FUNCTIONAL = "Functional"
    TIMEOUT = "Timeout"


class SourceLocation(BaseModel):
    file: str
    line: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.file}:{self.line}" if self.line else self.file


class ErrorRecord(BaseModel):
    id: str
    kind: ErrorKind
    component: str = "page"
    message: str
    location: Optional[SourceLocation] = None
    first_seen_iteration: int = 1
    last_seen_iteration: int = 1
    occurrence_count: int = 1
    scenario: str = "page-load"
    last_diagnostics: str = ""
