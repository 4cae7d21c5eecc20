"""
Message Normalizer
==================
Strips volatile substrings from diagnostic text so that the same failure
observed twice hashes to the same ErrorRecord id.

Removed / collapsed:
    - ISO-8601 timestamps and wall-clock times      → <ts>
    - UUIDs                                          → <uuid>
    - hex addresses (0x7ffd…)                        → <addr>
    - cache-buster query strings (?v=123, ?t=…)      → dropped
    - long numeric ids (6+ digits, epoch ms)         → <n>

Script URLs are mapped to tree-relative paths (``http://127.0.0.1:5173/js/app.js?v=3``
→ ``js/app.js``), so sessions on different ports agree on locations.
"""
import re
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

_ISO_TS = re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?")
_CLOCK = re.compile(r"\b\d{1,2}:\d{2}:\d{2}(?:\.\d+)?\b")
_UUID = re.compile(r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b")
_HEX_ADDR = re.compile(r"\b0x[0-9a-fA-F]+\b")
_CACHE_BUSTER = re.compile(r"\?(?:[\w.-]+=[\w.%-]*&?)+")
_LONG_NUMBER = re.compile(r"\b\d{6,}\b")
_WHITESPACE = re.compile(r"\s+")

# "at fn (http://host/js/app.js:12:5)" or "@http://host/js/app.js:12:5"
_STACK_FRAME = re.compile(r"(https?://[^\s()]+?):(\d+)(?::\d+)?\)?(?:\s|$)")


def normalize_message(text: str) -> str:
    """Return ``text`` with volatile substrings replaced by placeholders."""
    if not text:
        return ""
    out = _ISO_TS.sub("<ts>", text)
    out = _UUID.sub("<uuid>", out)
    out = _CLOCK.sub("<ts>", out)
    out = _HEX_ADDR.sub("<addr>", out)
    out = _CACHE_BUSTER.sub("", out)
    out = _LONG_NUMBER.sub("<n>", out)
    return _WHITESPACE.sub(" ", out).strip()


def to_tree_path(url: str) -> str:
    """
    Map a served script URL to its path relative to the tree root.

    Non-URL input is treated as already relative. Empty input gives "".
    """
    if not url:
        return ""
    parsed = urlparse(url)
    path = parsed.path if parsed.scheme else url.split("?", 1)[0]
    return unquote(path).lstrip("/")


def location_from_stack(stack: str) -> Tuple[Optional[str], Optional[int]]:
    """First served-script frame in a JS stack → (tree path, line)."""
    if not stack:
        return None, None
    match = _STACK_FRAME.search(stack)
    if not match:
        return None, None
    return to_tree_path(match.group(1)) or None, int(match.group(2))


def parse_source_ref(ref: str) -> Tuple[Optional[str], Optional[int]]:
    """Parse a ``file:line`` (or bare ``file``) reference."""
    if not ref:
        return None, None
    head, sep, tail = ref.rpartition(":")
    if sep and tail.isdigit():
        return to_tree_path(head) or None, int(tail)
    return to_tree_path(ref) or None, None
