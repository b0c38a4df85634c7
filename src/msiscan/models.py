from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from .utils import canonical_unit

STABLE = "stable"
UNSTABLE = "unstable"
INDETERMINATE = "indeterminate"

CLASSIFICATIONS = (STABLE, UNSTABLE, INDETERMINATE)


@dataclass(frozen=True)
class Locus:
    """A microsatellite locus on the reference.

    Coordinates are 0-based half-open.

    Attributes
    ----------
    chrom:
        Contig name as present in the FASTA/BAM headers.
    start, end:
        Span of the whole repeat on the reference.
    unit:
        Repeat unit in canonical form (lexicographically minimal rotation).
    ref_count:
        Number of full unit copies in the reference.
    """

    chrom: str
    start: int
    end: int
    unit: str
    ref_count: int

    def __post_init__(self) -> None:
        if not self.unit or not 1 <= len(self.unit) <= 6:
            raise ValueError(f"Repeat unit must be 1-6 bases, got {self.unit!r}")
        if self.start < 0 or self.end - self.start != len(self.unit) * self.ref_count:
            raise ValueError(
                f"Locus {self.chrom}:{self.start}-{self.end} does not hold "
                f"{self.ref_count} copies of {self.unit!r}"
            )
        if canonical_unit(self.unit) != self.unit:
            raise ValueError(f"Repeat unit {self.unit!r} is not in canonical form")

    @property
    def unit_length(self) -> int:
        return len(self.unit)

    @property
    def name(self) -> str:
        return f"({self.unit}){self.ref_count}"

    @property
    def region(self) -> str:
        return f"{self.chrom}:{self.start}-{self.end}"

    @property
    def key(self) -> Tuple[str, int, int]:
        return self.chrom, self.start, self.end


@dataclass(frozen=True)
class RepeatCandidate:
    """A maximal periodic run found by the scanner.

    ``unit`` is the canonical rotation of the motif, whatever phase the run
    starts in.
    """

    start: int
    end: int
    unit: str
    repeat_count: int

    @property
    def unit_length(self) -> int:
        return len(self.unit)


@dataclass(frozen=True)
class PileupRead:
    """Repeat-unit count observed in one read at one locus."""

    repeat_count: int
    base_quality_pass: bool
    mapping_quality_pass: bool


@dataclass(frozen=True)
class RepeatLengthDistribution:
    """Histogram of observed repeat-unit counts for one (locus, sample)."""

    counts: Mapping[int, int] = field(default_factory=dict)

    @property
    def coverage(self) -> int:
        return sum(self.counts.values())

    def normalized(self) -> Dict[int, float]:
        total = float(self.coverage)
        return {length: n / total for length, n in sorted(self.counts.items())}


class NoCoverage:
    """Marker for a (locus, sample) with no qualifying reads.

    Kept distinct from an empty histogram so that "no data" is never confused
    with an observation.
    """

    _instance: Optional["NoCoverage"] = None

    def __new__(cls) -> "NoCoverage":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    coverage = 0
    counts: Mapping[int, int] = {}

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_COVERAGE"

    def __reduce__(self) -> str:
        return "NO_COVERAGE"


NO_COVERAGE = NoCoverage()


@dataclass(frozen=True)
class LocusScore:
    """Per-locus comparison of tumor vs normal distributions."""

    locus: Locus
    tumor_coverage: int
    normal_coverage: int
    difference: float
    classification: str

    @property
    def is_confident(self) -> bool:
        return self.classification != INDETERMINATE


@dataclass(frozen=True)
class InstabilityReport:
    """Terminal artifact of a detect run."""

    scores: Tuple[LocusScore, ...]
    aggregate_score: Optional[float]
    n_stable: int
    n_unstable: int
    n_indeterminate: int
    status: str

    @property
    def is_defined(self) -> bool:
        return self.aggregate_score is not None and not math.isnan(self.aggregate_score)

    @property
    def n_loci(self) -> int:
        return len(self.scores)
