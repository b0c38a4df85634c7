from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Optional, TextIO

logger = logging.getLogger(__name__)

DNA_BASES = frozenset("ACGT")


def canonical_unit(unit: str) -> str:
    """Lexicographically minimal rotation of a repeat unit."""
    unit = unit.upper()
    return min(unit[i:] + unit[:i] for i in range(len(unit))) if unit else unit


def is_primitive(unit: str) -> bool:
    """True if ``unit`` is not a power of a shorter word (e.g. 'AA', 'ACAC')."""
    n = len(unit)
    # A word is a power iff it occurs inside its own square at a non-trivial offset.
    return n > 0 and (unit + unit).find(unit, 1) == n


def is_unambiguous(seq: str) -> bool:
    return set(seq) <= DNA_BASES


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def format_float(x: Optional[float], digits: int = 4) -> str:
    """Format a float for text output; None and NaN become 'NA'."""
    if x is None or x != x:
        return "NA"
    return f"{x:.{digits}f}"
