from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Union

import numpy as np

from .models import NO_COVERAGE, NoCoverage, PileupRead, RepeatLengthDistribution

logger = logging.getLogger(__name__)

Distribution = Union[RepeatLengthDistribution, NoCoverage]


def build_distribution(reads: Iterable[PileupRead]) -> Distribution:
    """Tally per-read repeat counts into a histogram.

    The total support always equals the number of reads given. An empty input
    yields ``NO_COVERAGE`` rather than an empty histogram.
    """
    counts = Counter(read.repeat_count for read in reads)
    if not counts:
        return NO_COVERAGE
    return RepeatLengthDistribution(counts=dict(sorted(counts.items())))


def filter_outliers(
    distribution: Distribution,
    *,
    min_repeat_reads: int = 3,
    outlier_sd: float = 3.0,
) -> Distribution:
    """Drop poorly supported and outlying repeat counts.

    Repeat counts seen in fewer than ``min_repeat_reads`` reads are removed
    first. Of the remainder, counts further than ``outlier_sd`` standard
    deviations from the read-weighted mean are removed. If nothing survives,
    ``NO_COVERAGE`` is returned.
    """
    if not distribution:
        return NO_COVERAGE

    kept = {k: n for k, n in distribution.counts.items() if n >= min_repeat_reads}
    if not kept:
        return NO_COVERAGE

    lengths = np.fromiter(kept.keys(), dtype=np.float64)
    weights = np.fromiter(kept.values(), dtype=np.float64)
    mu = float(np.average(lengths, weights=weights))
    sd = float(np.sqrt(np.average((lengths - mu) ** 2, weights=weights)))
    if sd > 0:
        kept = {k: n for k, n in kept.items() if abs(k - mu) <= outlier_sd * sd}

    if not kept:
        return NO_COVERAGE
    return RepeatLengthDistribution(counts=kept)
