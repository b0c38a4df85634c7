from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

import numpy as np
import pysam

from .config import DetectConfig
from .models import Locus, PileupRead
from .scanner import iter_periodic_runs
from .utils import canonical_unit

logger = logging.getLogger(__name__)

T = TypeVar("T")

# CIGAR operations
_MATCH_OPS = (0, 7, 8)  # M, =, X: consume query and ref
_QUERY_ONLY_OPS = (1, 4)  # I, S
_REF_ONLY_OPS = (2, 3)  # D, N


def query_window(read: pysam.AlignedSegment, ref_start: int, ref_end: int) -> Optional[Tuple[int, int]]:
    """Map the reference interval [ref_start, ref_end) onto query coordinates.

    This walks the CIGAR once. Insertions strictly inside the interval are
    included; deleted reference bases simply contribute no query bases. An
    endpoint falling inside a deletion maps to the next aligned query base.

    Returns None when the read does not reach both ends of the interval.
    """
    if read.cigartuples is None or ref_start < read.reference_start:
        return None

    ref_pos = read.reference_start
    query_pos = 0
    qstart: Optional[int] = None

    for op, length in read.cigartuples:
        if op in _MATCH_OPS:
            block_end = ref_pos + length
            if qstart is None and ref_start < block_end:
                qstart = query_pos + max(0, ref_start - ref_pos)
            if qstart is not None and ref_end <= block_end:
                return qstart, query_pos + max(0, ref_end - ref_pos)
            ref_pos = block_end
            query_pos += length
        elif op in _QUERY_ONLY_OPS:
            query_pos += length
        elif op in _REF_ONLY_OPS:
            ref_pos += length
        # H and P consume neither

    return None


def count_repeat_units(seq: str, unit: str) -> int:
    """Number of contiguous copies of ``unit`` (in any phase) in the longest run in ``seq``.

    A trailing partial copy is not counted.
    """
    unit = canonical_unit(unit)
    length = len(unit)
    best = 0
    for run in iter_periodic_runs(seq.upper(), length, min_count=2):
        if run.repeat_count > best and canonical_unit(run.unit) == unit:
            best = run.repeat_count
    if best:
        return best
    for i in range(len(seq) - length + 1):
        if canonical_unit(seq[i : i + length]) == unit:
            return 1
    return 0


def flanked_window(locus: Locus, config: DetectConfig, contig_length: Optional[int] = None) -> Tuple[int, int]:
    """Reference interval of the locus plus its margin, clipped to the contig."""
    margin = config.margin_for(locus.unit_length)
    end = locus.end + margin
    if contig_length is not None:
        end = min(end, contig_length)
    return max(0, locus.start - margin), end


def observe_read(
    locus: Locus,
    read: pysam.AlignedSegment,
    config: DetectConfig,
    contig_length: Optional[int] = None,
) -> Optional[PileupRead]:
    """Decode one spanning read at ``locus`` and evaluate its quality gates.

    Returns None when the read's bases across the locus window cannot be
    decoded (no sequence, or the window is not covered).
    """
    seq = read.query_sequence
    if seq is None:
        return None

    window = query_window(read, *flanked_window(locus, config, contig_length))
    if window is None:
        return None
    repeat_count = count_repeat_units(seq[window[0] : window[1]], locus.unit)

    quals = read.query_qualities
    if quals is None or len(quals) == 0:
        base_quality_pass = False
    else:
        span = query_window(read, locus.start, locus.end)
        if span is None or span[1] <= span[0]:
            span = window
        span_quals = np.asarray(quals[span[0] : span[1]], dtype=np.float64)
        if span_quals.size == 0:
            base_quality_pass = False
        else:
            base_quality_pass = bool(
                span_quals.min() >= config.min_base_quality
                and span_quals.mean() >= config.min_locus_mean_base_quality
                and np.mean(quals) >= config.min_read_mean_base_quality
            )

    return PileupRead(
        repeat_count=repeat_count,
        base_quality_pass=base_quality_pass,
        mapping_quality_pass=int(read.mapping_quality) >= config.min_mapq,
    )


def read_gates(
    locus: Locus,
    config: DetectConfig,
    contig_length: Optional[int] = None,
) -> List[Tuple[str, Callable[[pysam.AlignedSegment], bool]]]:
    """Ordered (reason, predicate) pairs applied to raw reads before decoding."""
    window_start, window_end = flanked_window(locus, config, contig_length)

    gates: List[Tuple[str, Callable[[pysam.AlignedSegment], bool]]] = [
        ("unmapped", lambda r: not r.is_unmapped and r.cigartuples is not None),
        ("qcfail", lambda r: not r.is_qcfail),
    ]
    if not config.include_secondary:
        gates.append(("secondary", lambda r: not r.is_secondary))
    if not config.include_supplementary:
        gates.append(("supplementary", lambda r: not r.is_supplementary))
    if config.skip_duplicates:
        gates.append(("duplicate", lambda r: not r.is_duplicate))
    gates.append(("short_read", lambda r: int(r.query_alignment_length or 0) >= config.min_read_length))
    gates.append(
        (
            "not_spanning",
            lambda r: r.reference_start <= window_start
            and r.reference_end is not None
            and r.reference_end >= window_end,
        )
    )
    return gates


_OBSERVATION_GATES: Sequence[Tuple[str, Callable[[PileupRead], bool]]] = (
    ("mapq", lambda p: p.mapping_quality_pass),
    ("baseq", lambda p: p.base_quality_pass),
)


def _gate(items: Iterable[T], reason: str, predicate: Callable[[T], bool], stats: Counter) -> Iterator[T]:
    for item in items:
        if predicate(item):
            yield item
        else:
            stats[reason] += 1


def extract_pileup(
    locus: Locus,
    reads: Iterable[pysam.AlignedSegment],
    config: DetectConfig,
    stats: Optional[Counter] = None,
    contig_length: Optional[int] = None,
) -> List[PileupRead]:
    """Per-read repeat-unit counts at ``locus`` for reads passing every gate.

    Reads failing a gate are dropped without error; ``stats`` (if given)
    accumulates the reason for each exclusion and the number of reads used.
    The flanked window is clipped to the contig start and, when
    ``contig_length`` is given, to the contig end.
    """
    if stats is None:
        stats = Counter()

    stream: Iterable = reads
    for reason, predicate in read_gates(locus, config, contig_length):
        stream = _gate(stream, reason, predicate, stats)

    observations: Iterable = (observe_read(locus, read, config, contig_length) for read in stream)
    observations = _gate(observations, "undecodable", lambda p: p is not None, stats)
    for reason, predicate in _OBSERVATION_GATES:
        observations = _gate(observations, reason, predicate, stats)

    pileup = list(observations)
    stats["used"] += len(pileup)
    return pileup


def fetch_reads(bam: pysam.AlignmentFile, locus: Locus, config: DetectConfig) -> Iterator[pysam.AlignedSegment]:
    """Reads overlapping the locus plus its margin (a blocking indexed query)."""
    contig_length = bam.get_reference_length(locus.chrom)
    return bam.fetch(locus.chrom, *flanked_window(locus, config, contig_length))
