"""
Fix Signatures
==============
Catalog of known failure signatures and the source rewrites that fix them.

Matching Strategy:
    1. KIND FILTER FIRST — a signature only applies to the error kinds it names
    2. REGEX PATTERNS SECOND — first matching pattern wins; its named groups
       fill the ``{group}`` placeholders of every rewrite
    3. NEVER free-form synthesis: unmatched records get no candidate

Each rewrite carries a fixed confidence (0–100). Extra signatures can be
declared in fixloop.yml under ``signatures`` with the same shape.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from fixloop.models.error_record import ErrorKind, ErrorRecord


# ---------------------------------------------------------------------------
# Confidence Constants
# ---------------------------------------------------------------------------
CONF_HIGH = 90
CONF_MEDIUM = 80
CONF_LOW = 70

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def render(template: str, groups: Dict[str, str]) -> str:
    """Substitute ``{name}`` with the matched group; unknown names stay literal."""
    return _PLACEHOLDER.sub(lambda m: groups.get(m.group(1), m.group(0)), template)


@dataclass(frozen=True)
class Rewrite:
    find: str
    replace: str
    confidence: int
    description: str


@dataclass(frozen=True)
class FixSignature:
    id: str
    kinds: FrozenSet[ErrorKind]
    patterns: Tuple[re.Pattern, ...]
    rewrites: Tuple[Rewrite, ...]

    def match(self, record: ErrorRecord) -> Optional[Dict[str, str]]:
        """Named groups of the first matching pattern, or None."""
        if record.kind not in self.kinds:
            return None
        for pattern in self.patterns:
            found = pattern.search(record.message)
            if found:
                return {k: v for k, v in found.groupdict().items() if v is not None}
        return None


_SCRIPT_KINDS = frozenset({ErrorKind.RUNTIME, ErrorKind.CONSOLE})

BUILTIN_SIGNATURES: List[FixSignature] = [
    FixSignature(
        id="undefined-property-read",
        kinds=_SCRIPT_KINDS,
        patterns=(
            re.compile(r"Cannot read propert(?:y|ies) of (?:undefined|null) \(reading '(?P<prop>[\w$]+)'\)"),
            re.compile(r"Cannot read property '(?P<prop>[\w$]+)' of (?:undefined|null)"),
        ),
        rewrites=(
            Rewrite(".{prop}", "?.{prop}", CONF_HIGH,
                    "Guard read of '{prop}' with optional chaining"),
        ),
    ),
    FixSignature(
        id="wrong-collection-accessor",
        kinds=_SCRIPT_KINDS,
        patterns=(
            re.compile(r"(?P<expr>[\w$.]+)\.(?P<method>forEach|map|filter|reduce|some|every|find) is not a function"),
        ),
        rewrites=(
            Rewrite("{expr}.{method}(", "Object.values({expr}).{method}(", 85,
                    "Iterate the values of plain object '{expr}'"),
            Rewrite("{expr}.{method}(", "Array.from({expr}.values()).{method}(", CONF_LOW,
                    "Iterate the values of keyed collection '{expr}'"),
        ),
    ),
    FixSignature(
        id="non-iterable-collection",
        kinds=_SCRIPT_KINDS,
        patterns=(
            re.compile(r"(?P<expr>[\w$.]+) is not iterable"),
        ),
        rewrites=(
            Rewrite("of {expr})", "of Object.values({expr}))", CONF_MEDIUM,
                    "Loop over the values of '{expr}'"),
        ),
    ),
    FixSignature(
        id="undefined-global",
        kinds=_SCRIPT_KINDS,
        patterns=(
            re.compile(r"\b(?P<name>[A-Za-z_$][\w$]*) is not defined"),
        ),
        rewrites=(
            Rewrite("{name}.", "globalThis.{name}?.", CONF_LOW,
                    "Read missing global '{name}' through globalThis"),
            Rewrite("{name}(", "globalThis.{name}?.(", 65,
                    "Skip the call when global '{name}' is missing"),
        ),
    ),
    FixSignature(
        id="stale-enable-condition",
        kinds=frozenset({ErrorKind.FUNCTIONAL}),
        patterns=(
            re.compile(r"stays disabled|not enabled"),
        ),
        rewrites=(
            Rewrite("addEventListener('change'", "addEventListener('input'", CONF_LOW,
                    "Re-evaluate the enable condition on every input"),
            Rewrite('addEventListener("change"', 'addEventListener("input"', CONF_LOW,
                    "Re-evaluate the enable condition on every input"),
        ),
    ),
]


def signature_from_config(entry: Dict[str, Any]) -> FixSignature:
    """
    Build a FixSignature from a fixloop.yml ``signatures`` entry.

    Raises ValueError on a malformed entry.
    """
    try:
        sig_id = str(entry["id"])
        raw_patterns = entry.get("patterns") or [entry["pattern"]]
        raw_rewrites = entry["rewrites"]
    except KeyError as exc:
        raise ValueError(f"Signature entry missing {exc}") from exc

    kinds = frozenset(ErrorKind(k) for k in entry.get("kinds", [k.value for k in _SCRIPT_KINDS]))
    rewrites = tuple(
        Rewrite(
            find=str(r["find"]),
            replace=str(r["replace"]),
            confidence=int(r.get("confidence", CONF_LOW)),
            description=str(r.get("description", f"{sig_id} rewrite")),
        )
        for r in raw_rewrites
    )
    if not rewrites:
        raise ValueError(f"Signature {sig_id} declares no rewrites")
    for rewrite in rewrites:
        if not 0 <= rewrite.confidence <= 100:
            raise ValueError(f"Signature {sig_id}: confidence must be 0-100")

    return FixSignature(
        id=sig_id,
        kinds=kinds,
        patterns=tuple(re.compile(p) for p in raw_patterns),
        rewrites=rewrites,
    )
