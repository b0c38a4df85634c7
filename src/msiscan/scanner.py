"""Discovery of periodic runs in a reference sequence.

For each unit length L the scan walks the sequence once, comparing every base
with the base L positions downstream. A maximal stretch ``[a, b)`` where
``seq[i] == seq[i + L]`` holds means ``seq[a:b + L]`` has period L. The run is
truncated to whole copies of the unit, so a candidate always satisfies
``end - start == L * repeat_count``.

A run of at least two copies whose unit is primitive cannot have a shorter
period (Fine and Wilf), so "AAAA" is only ever reported as ('A', 4) and never
as ('AA', 2).
"""

from __future__ import annotations

import heapq
import itertools
import logging
from typing import Iterator

from .config import ScanConfig
from .models import RepeatCandidate
from .utils import canonical_unit, is_primitive, is_unambiguous

logger = logging.getLogger(__name__)


def iter_periodic_runs(seq: str, unit_length: int, min_count: int = 2) -> Iterator[RepeatCandidate]:
    """Yield maximal runs of period ``unit_length`` in order of start position.

    Units are reported in canonical form. Runs whose unit is not primitive, or
    contains anything other than A/C/G/T, are skipped.
    """
    step = unit_length
    min_count = max(2, min_count)
    last = len(seq) - step
    i = 0
    while i < last:
        if seq[i] != seq[i + step]:
            i += 1
            continue
        run_start = i
        while i < last and seq[i] == seq[i + step]:
            i += 1
        count = (i - run_start + step) // step
        if count < min_count:
            continue
        unit = seq[run_start : run_start + step]
        if not is_unambiguous(unit) or not is_primitive(unit):
            continue
        yield RepeatCandidate(
            start=run_start,
            end=run_start + count * step,
            unit=canonical_unit(unit),
            repeat_count=count,
        )


class SequenceScanner:
    """Lazy, restartable left-to-right scan for repeat candidates.

    Iterating the scanner yields :class:`RepeatCandidate` values sorted by
    start. When runs with different unit lengths begin at the same position,
    only the one reaching farthest is kept; ties go to the smallest unit
    length.
    """

    def __init__(self, sequence: str, config: ScanConfig) -> None:
        self.sequence = sequence
        self.config = config

    def __iter__(self) -> Iterator[RepeatCandidate]:
        streams = [
            iter_periodic_runs(self.sequence, length, self.config.min_repeats_for(length))
            for length in range(self.config.min_unit_length, self.config.max_unit_length + 1)
        ]
        merged = heapq.merge(*streams, key=lambda c: (c.start, c.unit_length))
        for _start, group in itertools.groupby(merged, key=lambda c: c.start):
            yield min(group, key=lambda c: (-c.end, c.unit_length))
