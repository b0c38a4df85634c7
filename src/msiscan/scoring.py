"""Per-locus and genome-wide instability scores.

Distance metrics are plain callables over two normalized repeat-length
distributions. Any metric used here must be symmetric, exactly zero for
identical distributions, and increase as the distributions diverge.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, Iterable, Mapping, Optional, Union

import numpy as np

from .distribution import Distribution
from .models import (
    INDETERMINATE,
    STABLE,
    UNSTABLE,
    InstabilityReport,
    Locus,
    LocusScore,
)

logger = logging.getLogger(__name__)

DistanceMetric = Callable[[Mapping[int, float], Mapping[int, float]], float]

STATUS_MSI = "MSI"
STATUS_MSS = "MSS"
STATUS_UNDEFINED = "undefined"

_MIN_CONFIDENT_LOCI_WARNING = 10


def _support(p: Mapping[int, float], q: Mapping[int, float]) -> list[int]:
    return sorted(set(p) | set(q))


def step_wise_difference(p: Mapping[int, float], q: Mapping[int, float]) -> float:
    """Half the summed absolute difference per repeat length (total variation), in [0, 1]."""
    return 0.5 * math.fsum(abs(p.get(k, 0.0) - q.get(k, 0.0)) for k in _support(p, q))


def cosine_dissimilarity(p: Mapping[int, float], q: Mapping[int, float]) -> float:
    """1 - cosine similarity of the two probability vectors, in [0, 1]."""
    if p == q:
        return 0.0
    keys = _support(p, q)
    a = np.array([p.get(k, 0.0) for k in keys], dtype=np.float64)
    b = np.array([q.get(k, 0.0) for k in keys], dtype=np.float64)
    denom = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denom == 0.0:
        return 1.0
    return max(0.0, 1.0 - float(np.dot(a, b)) / denom)


def euclidean_distance(p: Mapping[int, float], q: Mapping[int, float]) -> float:
    """L2 distance scaled by 1/sqrt(2) so it lies in [0, 1]."""
    sq = math.fsum((p.get(k, 0.0) - q.get(k, 0.0)) ** 2 for k in _support(p, q))
    return math.sqrt(sq) / math.sqrt(2.0)


DISTANCE_METRICS: Dict[str, DistanceMetric] = {
    "step-wise": step_wise_difference,
    "cosine": cosine_dissimilarity,
    "euclidean": euclidean_distance,
}


def get_metric(metric: Union[str, DistanceMetric]) -> DistanceMetric:
    if callable(metric):
        return metric
    try:
        return DISTANCE_METRICS[metric]
    except KeyError:
        raise ValueError(
            f"Unknown distance metric {metric!r}; choose from {sorted(DISTANCE_METRICS)}"
        ) from None


def score_locus(
    locus: Locus,
    tumor: Distribution,
    normal: Distribution,
    *,
    min_coverage: int,
    threshold: float,
    metric: Union[str, DistanceMetric] = "step-wise",
) -> LocusScore:
    """Compare tumor and normal distributions at one locus.

    If either sample has fewer than ``min_coverage`` qualifying reads the
    locus is indeterminate and its difference is NaN.
    """
    tumor_cov = tumor.coverage
    normal_cov = normal.coverage
    if not tumor or not normal or tumor_cov < min_coverage or normal_cov < min_coverage:
        return LocusScore(
            locus=locus,
            tumor_coverage=tumor_cov,
            normal_coverage=normal_cov,
            difference=float("nan"),
            classification=INDETERMINATE,
        )

    difference = float(get_metric(metric)(tumor.normalized(), normal.normalized()))
    return LocusScore(
        locus=locus,
        tumor_coverage=tumor_cov,
        normal_coverage=normal_cov,
        difference=difference,
        classification=UNSTABLE if difference > threshold else STABLE,
    )


def aggregate_scores(scores: Iterable[LocusScore], *, msi_threshold: float = 0.4) -> InstabilityReport:
    """Mean difference over stable and unstable loci.

    Indeterminate loci are counted but excluded from the mean. When no locus
    is confident the aggregate score is None and the status 'undefined'.
    """
    scores = tuple(scores)
    confident = [s.difference for s in scores if s.classification != INDETERMINATE]
    n_stable = sum(1 for s in scores if s.classification == STABLE)
    n_unstable = sum(1 for s in scores if s.classification == UNSTABLE)
    n_indeterminate = len(scores) - len(confident)

    aggregate: Optional[float]
    if confident:
        aggregate = math.fsum(confident) / len(confident)
        status = STATUS_MSI if aggregate >= msi_threshold else STATUS_MSS
        if len(confident) < _MIN_CONFIDENT_LOCI_WARNING:
            logger.warning(
                "Only %d loci had sufficient coverage in both samples; "
                "the aggregate score may be unreliable.",
                len(confident),
            )
    else:
        aggregate = None
        status = STATUS_UNDEFINED
        logger.warning(
            "No locus had sufficient coverage in both samples (%d indeterminate); "
            "the aggregate instability score is undefined.",
            n_indeterminate,
        )

    return InstabilityReport(
        scores=scores,
        aggregate_score=aggregate,
        n_stable=n_stable,
        n_unstable=n_unstable,
        n_indeterminate=n_indeterminate,
        status=status,
    )
