from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .config import ScanConfig
from .errors import LociFileError
from .models import Locus, RepeatCandidate
from .scanner import SequenceScanner
from .utils import canonical_unit, is_unambiguous, open_textmaybe_gzip

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^\(([ACGTacgt]{1,6})\)(\d+)$")
_BED_COLUMNS = 6
_SKIP_PREFIXES = ("#", "track", "browser")


def parse_repeat_name(name: str) -> Tuple[str, int]:
    """Parse a BED name field such as ``(AC)16`` into ('AC', 16)."""
    m = _NAME_RE.match(name.strip())
    if m is None:
        raise ValueError(f"Repeat name must look like (UNIT)COUNT, got {name!r}")
    return m.group(1).upper(), int(m.group(2))


def format_repeat_name(unit: str, count: int) -> str:
    return f"({unit}){count}"


class LocusFilter:
    """Accept or reject repeat candidates on one contig.

    A candidate becomes a :class:`Locus` when:

    - its unit length is within the configured range,
    - it holds at least the per-unit-length minimum number of copies,
    - its span in bases is within ``[min_bases, max_bases]``,
    - neither flank continues the run's periodicity for ``flank_window``
      bases (and both flanks are inside the contig and free of 'N'),
    - it is not enclosed by a locus accepted earlier.

    Candidates must arrive sorted by start. The filter is a pure function of
    (sequence, config, candidates).
    """

    def __init__(self, chrom: str, sequence: str, config: ScanConfig) -> None:
        self.chrom = chrom
        self.sequence = sequence
        self.config = config

    def passes_counts(self, cand: RepeatCandidate) -> bool:
        cfg = self.config
        length = cand.unit_length
        if not cfg.min_unit_length <= length <= cfg.max_unit_length:
            return False
        if cand.repeat_count < cfg.min_repeats_for(length):
            return False
        span = cand.end - cand.start
        return cfg.min_bases <= span <= cfg.max_bases

    def flank_continuation(self, start: int, end: int, unit_length: int) -> Tuple[int, int]:
        """Number of bases on each side that continue the run's periodicity."""
        seq = self.sequence
        window = self.config.flank_window
        left = 0
        while (
            left < window
            and start - left - 1 >= 0
            and seq[start - left - 1] == seq[start - left - 1 + unit_length]
        ):
            left += 1
        right = 0
        while (
            right < window
            and end + right < len(seq)
            and seq[end + right] == seq[end + right - unit_length]
        ):
            right += 1
        return left, right

    def flanks_are_unique(self, cand: RepeatCandidate) -> bool:
        window = self.config.flank_window
        if window == 0:
            return True
        if cand.start - window < 0 or cand.end + window > len(self.sequence):
            return False
        left_flank = self.sequence[cand.start - window : cand.start]
        right_flank = self.sequence[cand.end : cand.end + window]
        if not (is_unambiguous(left_flank) and is_unambiguous(right_flank)):
            return False
        left, right = self.flank_continuation(cand.start, cand.end, cand.unit_length)
        return left < window and right < window

    def filter(self, candidates: Iterable[Union[RepeatCandidate, Locus]]) -> Iterator[Locus]:
        enclosing_end: Optional[int] = None
        for item in candidates:
            cand = _as_candidate(item)
            if enclosing_end is not None and cand.end <= enclosing_end:
                continue
            if not self.passes_counts(cand):
                continue
            if not self.flanks_are_unique(cand):
                continue
            enclosing_end = cand.end if enclosing_end is None else max(enclosing_end, cand.end)
            yield Locus(
                chrom=self.chrom,
                start=cand.start,
                end=cand.end,
                unit=canonical_unit(cand.unit),
                ref_count=cand.repeat_count,
            )


def _as_candidate(item: Union[RepeatCandidate, Locus]) -> RepeatCandidate:
    if isinstance(item, Locus):
        return RepeatCandidate(
            start=item.start, end=item.end, unit=item.unit, repeat_count=item.ref_count
        )
    return item


def find_loci(chrom: str, sequence: str, config: ScanConfig) -> Iterator[Locus]:
    """Scan one contig's bases and yield accepted loci in coordinate order."""
    sequence = sequence.upper()
    scanner = SequenceScanner(sequence, config)
    return LocusFilter(chrom, sequence, config).filter(scanner)


def read_loci(path: str | Path) -> List[Locus]:
    """Load loci from a six-column BED file.

    Raises
    ------
    LociFileError
        On the first malformed row, naming its line number.
    """
    loci: List[Locus] = []
    with open_textmaybe_gzip(path, "rt") as fh:
        for lineno, raw in enumerate(fh, start=1):
            line = raw.rstrip("\r\n")
            if not line.strip() or line.startswith(_SKIP_PREFIXES):
                continue
            loci.append(_parse_bed_line(line, lineno, path))
    logger.info("Loaded %d loci from %s", len(loci), path)
    return loci


def _parse_bed_line(line: str, lineno: int, path: str | Path) -> Locus:
    where = f"{path}:{lineno}"
    fields = line.split("\t")
    if len(fields) != _BED_COLUMNS:
        raise LociFileError(
            f"{where}: expected {_BED_COLUMNS} tab-separated columns, found {len(fields)}",
            record=line,
        )
    chrom, start_s, end_s, name = fields[:4]
    try:
        start = int(start_s)
        end = int(end_s)
    except ValueError:
        raise LociFileError(f"{where}: start/end must be integers", record=line) from None
    if start < 0 or end <= start:
        raise LociFileError(f"{where}: invalid interval {start}-{end}", record=line)
    try:
        unit, count = parse_repeat_name(name)
    except ValueError as e:
        raise LociFileError(f"{where}: {e}", record=line) from None
    if end - start != len(unit) * count:
        raise LociFileError(
            f"{where}: span {end - start} does not equal {count} x {len(unit)} bases",
            record=line,
        )
    return Locus(chrom=chrom, start=start, end=end, unit=canonical_unit(unit), ref_count=count)


def write_loci(path: str | Path, loci: Iterable[Locus]) -> int:
    """Write loci as six-column BED; returns the number of rows written."""
    n = 0
    with open_textmaybe_gzip(path, "wt") as fh:
        for locus in loci:
            fh.write(
                f"{locus.chrom}\t{locus.start}\t{locus.end}\t"
                f"{format_repeat_name(locus.unit, locus.ref_count)}\t0\t+\n"
            )
            n += 1
    return n


def sort_loci(loci: Iterable[Locus], contig_order: Sequence[str]) -> List[Locus]:
    """Sort loci by reference contig order, then start and end."""
    rank = {name: i for i, name in enumerate(contig_order)}
    return sorted(loci, key=lambda l: (rank.get(l.chrom, len(rank)),) + l.key)
