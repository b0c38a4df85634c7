import math
import pickle

import pytest

from msiscan.distribution import build_distribution, filter_outliers
from msiscan.models import (
    INDETERMINATE,
    NO_COVERAGE,
    STABLE,
    UNSTABLE,
    Locus,
    LocusScore,
    PileupRead,
    RepeatLengthDistribution,
)
from msiscan.scoring import (
    DISTANCE_METRICS,
    STATUS_MSI,
    STATUS_MSS,
    STATUS_UNDEFINED,
    aggregate_scores,
    get_metric,
    score_locus,
    step_wise_difference,
)

LOCUS = Locus(chrom="chr1", start=100, end=132, unit="AC", ref_count=16)


def _reads(*counts: int):
    return [PileupRead(repeat_count=c, base_quality_pass=True, mapping_quality_pass=True) for c in counts]


def _score(diff: float, classification: str, start: int = 100) -> LocusScore:
    locus = Locus(chrom="chr1", start=start, end=start + 24, unit="AC", ref_count=12)
    return LocusScore(
        locus=locus,
        tumor_coverage=40,
        normal_coverage=40,
        difference=diff,
        classification=classification,
    )


def test_distribution_support_equals_reads():
    dist = build_distribution(_reads(12, 12, 13, 11, 12))
    assert dist.coverage == 5
    assert dist.counts == {11: 1, 12: 3, 13: 1}
    assert sum(dist.normalized().values()) == pytest.approx(1.0)


def test_no_coverage_is_distinct_from_empty():
    dist = build_distribution([])
    assert dist is NO_COVERAGE
    assert not dist
    assert dist.coverage == 0
    assert pickle.loads(pickle.dumps(NO_COVERAGE)) is NO_COVERAGE


def test_filter_outliers_drops_poorly_supported_lengths():
    dist = RepeatLengthDistribution(counts={10: 20, 14: 20, 30: 2})
    assert filter_outliers(dist, min_repeat_reads=3).counts == {10: 20, 14: 20}


def test_filter_outliers_drops_distant_lengths():
    dist = RepeatLengthDistribution(counts={12: 100, 13: 100, 40: 3})
    assert filter_outliers(dist, min_repeat_reads=3, outlier_sd=3.0).counts == {12: 100, 13: 100}


def test_filter_outliers_can_empty_a_sample():
    dist = RepeatLengthDistribution(counts={10: 1, 11: 2})
    assert filter_outliers(dist, min_repeat_reads=3) is NO_COVERAGE
    assert filter_outliers(NO_COVERAGE) is NO_COVERAGE


@pytest.mark.parametrize("name", sorted(DISTANCE_METRICS))
def test_metric_properties(name):
    metric = get_metric(name)
    p = {10: 0.5, 14: 0.5}
    q = {12: 1.0}
    r = {11: 0.25, 12: 0.75}
    assert metric(p, p) == 0.0
    assert metric(p, q) == pytest.approx(metric(q, p))
    assert metric(r, q) < metric(p, q)
    assert 0.0 <= metric(p, q) <= 1.0


def test_step_wise_difference_values():
    assert step_wise_difference({10: 0.5, 14: 0.5}, {12: 1.0}) == pytest.approx(1.0)
    assert step_wise_difference({11: 0.5, 12: 0.5}, {12: 1.0}) == pytest.approx(0.5)


def test_unknown_metric():
    with pytest.raises(ValueError, match="Unknown distance metric"):
        get_metric("hamming")


def test_shifted_tumor_is_unstable():
    normal = build_distribution(_reads(*([16] * 40)))
    tumor = build_distribution(_reads(*([14] * 20 + [18] * 20)))
    score = score_locus(LOCUS, tumor, normal, min_coverage=30, threshold=0.4)
    assert score.classification == UNSTABLE
    assert score.difference == pytest.approx(1.0)
    assert score.tumor_coverage == 40 and score.normal_coverage == 40


def test_identical_samples_are_stable():
    normal = build_distribution(_reads(*([16] * 40)))
    tumor = build_distribution(_reads(*([16] * 40)))
    score = score_locus(LOCUS, tumor, normal, min_coverage=30, threshold=0.4)
    assert score.classification == STABLE
    assert score.difference == 0.0


def test_difference_at_threshold_is_stable():
    normal = build_distribution(_reads(*([12] * 40)))
    tumor = build_distribution(_reads(*([12] * 20 + [13] * 20)))
    score = score_locus(LOCUS, tumor, normal, min_coverage=30, threshold=0.5)
    assert score.difference == pytest.approx(0.5)
    assert score.classification == STABLE


def test_low_coverage_is_indeterminate():
    normal = build_distribution(_reads(*([12] * 40)))
    tumor = build_distribution(_reads(*([10] * 10)))
    score = score_locus(LOCUS, tumor, normal, min_coverage=30, threshold=0.4)
    assert score.classification == INDETERMINATE
    assert math.isnan(score.difference)

    score = score_locus(LOCUS, NO_COVERAGE, normal, min_coverage=30, threshold=0.4)
    assert score.classification == INDETERMINATE
    assert score.tumor_coverage == 0


def test_aggregate_excludes_indeterminate():
    scores = [
        _score(0.1, STABLE, 100),
        _score(0.7, UNSTABLE, 200),
        _score(float("nan"), INDETERMINATE, 300),
        _score(0.2, STABLE, 400),
    ]
    report = aggregate_scores(scores, msi_threshold=0.4)
    assert report.aggregate_score == pytest.approx(1.0 / 3.0)
    assert (report.n_stable, report.n_unstable, report.n_indeterminate) == (2, 1, 1)
    assert report.status == STATUS_MSS
    assert report.n_loci == 4

    assert aggregate_scores(list(reversed(scores))).aggregate_score == report.aggregate_score
    assert aggregate_scores(scores, msi_threshold=0.3).status == STATUS_MSI


def test_aggregate_undefined_without_confident_loci():
    scores = [_score(float("nan"), INDETERMINATE, 100), _score(float("nan"), INDETERMINATE, 200)]
    report = aggregate_scores(scores)
    assert report.aggregate_score is None
    assert not report.is_defined
    assert report.status == STATUS_UNDEFINED
    assert report.n_indeterminate == 2


def test_aggregate_of_nothing_is_undefined():
    report = aggregate_scores([])
    assert report.status == STATUS_UNDEFINED
    assert report.n_loci == 0
