"""
Noise Rules
===========
Allow-list of console messages that never become ErrorRecords.

Built-in patterns:
    - favicon requests
    - benign 404s for source maps and touch icons
    - DevTools / extension hints
    - browser intervention / deprecation notices

Projects extend the list with ``noise_patterns`` in fixloop.yml.
Page errors are never filtered: an uncaught exception is always signal.
"""
import re
from typing import Iterable, List, Pattern

DEFAULT_NOISE_PATTERNS: List[str] = [
    r"favicon\.ico",
    r"apple-touch-icon",
    r"\.map\b.*(?:404|Not Found)",
    r"(?:404|Not Found).*\.map\b",
    r"Download the \w+ DevTools",
    r"DevTools failed to load",
    r"chrome-extension://",
    r"\[Intervention\]",
    r"\[Deprecation\]",
]


class NoiseFilter:
    """Compiled allow-list; ``is_noise(text)`` is True for ignorable messages."""

    def __init__(self, extra_patterns: Iterable[str] = ()) -> None:
        self.patterns: List[Pattern[str]] = [
            re.compile(p, re.IGNORECASE)
            for p in [*DEFAULT_NOISE_PATTERNS, *extra_patterns]
        ]

    def is_noise(self, text: str) -> bool:
        return any(p.search(text or "") for p in self.patterns)
