from __future__ import annotations

import functools
import logging
import multiprocessing
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

import pysam
from tqdm import tqdm

from .config import DetectConfig
from .distribution import Distribution, build_distribution, filter_outliers
from .errors import InputError
from .loci import read_loci, sort_loci
from .models import InstabilityReport, Locus, LocusScore
from .pileup import extract_pileup, fetch_reads
from .scoring import aggregate_scores, get_metric, score_locus
from .validation import bam_contigs, check_bam_index, check_contigs, check_fasta_index, fasta_contigs

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class LocusObservation:
    """Repeat-length distributions of both samples at one locus."""

    locus: Locus
    normal: Distribution
    tumor: Distribution


class LocusWorker:
    """Per-locus extraction and scoring over one pair of alignment handles.

    Each worker opens its own handles; pysam file objects are never shared
    between processes.
    """

    def __init__(
        self,
        normal_bam: str,
        tumor_bam: str,
        config: DetectConfig,
        reference: Optional[str] = None,
    ) -> None:
        self.config = config
        self.normal = pysam.AlignmentFile(normal_bam, reference_filename=reference)
        self.tumor = pysam.AlignmentFile(tumor_bam, reference_filename=reference)
        self.stats: Dict[str, Counter] = {"normal": Counter(), "tumor": Counter()}

    def _distribution(self, bam: pysam.AlignmentFile, locus: Locus, stats: Counter) -> Distribution:
        cfg = self.config
        pileup = extract_pileup(
            locus,
            fetch_reads(bam, locus, cfg),
            cfg,
            stats,
            contig_length=bam.get_reference_length(locus.chrom),
        )
        return filter_outliers(
            build_distribution(pileup),
            min_repeat_reads=cfg.min_repeat_reads,
            outlier_sd=cfg.outlier_sd,
        )

    def observe(self, locus: Locus) -> LocusObservation:
        return LocusObservation(
            locus=locus,
            normal=self._distribution(self.normal, locus, self.stats["normal"]),
            tumor=self._distribution(self.tumor, locus, self.stats["tumor"]),
        )

    def score(self, locus: Locus) -> LocusScore:
        obs = self.observe(locus)
        cfg = self.config
        return score_locus(
            locus,
            obs.tumor,
            obs.normal,
            min_coverage=cfg.min_coverage,
            threshold=cfg.locus_threshold,
            metric=cfg.metric,
        )

    def drain_stats(self) -> Dict[str, Counter]:
        """Return the exclusion counters gathered since the last call and reset them."""
        stats = self.stats
        self.stats = {"normal": Counter(), "tumor": Counter()}
        return stats

    def close(self) -> None:
        self.normal.close()
        self.tumor.close()


_WORKER: Optional[LocusWorker] = None

# A task runs one locus on a worker and returns its result plus the read
# exclusion counters gathered for that locus.
LocusTask = Callable[[LocusWorker, Locus], Tuple[R, Dict[str, Counter]]]


def _score_task(worker: LocusWorker, locus: Locus) -> Tuple[LocusScore, Dict[str, Counter]]:
    return worker.score(locus), worker.drain_stats()


def _observe_task(worker: LocusWorker, locus: Locus) -> Tuple[LocusObservation, Dict[str, Counter]]:
    return worker.observe(locus), worker.drain_stats()


def _init_worker(normal_bam: str, tumor_bam: str, config: DetectConfig, reference: Optional[str]) -> None:
    global _WORKER
    _WORKER = LocusWorker(normal_bam, tumor_bam, config, reference)


def _call_in_worker(task: LocusTask, locus: Locus) -> Tuple[R, Dict[str, Counter]]:
    assert _WORKER is not None
    return task(_WORKER, locus)


def _run_per_locus(
    loci: Sequence[Locus],
    task: LocusTask,
    *,
    normal_bam: str,
    tumor_bam: str,
    config: DetectConfig,
    reference: Optional[str],
    threads: int,
    progress: bool,
) -> List[R]:
    """Run ``task`` for every locus and return results in the order of ``loci``.

    Results are collected keyed by locus, so completion order does not matter.
    Any exception raised by a worker propagates and aborts the whole run.
    Read exclusion counters from every worker are summed and logged at DEBUG.
    """
    results: Dict[Locus, R] = {}
    totals: Dict[str, Counter] = {"normal": Counter(), "tumor": Counter()}

    def _collect(it: Iterable[Tuple[Locus, Tuple[R, Dict[str, Counter]]]]) -> None:
        if progress:
            it = tqdm(it, total=len(loci), unit="locus", desc="Scoring loci")
        for locus, (res, stats) in it:
            results[locus] = res
            for sample, counter in stats.items():
                totals[sample].update(counter)

    if threads <= 1:
        worker = LocusWorker(normal_bam, tumor_bam, config, reference)
        try:
            _collect((locus, task(worker, locus)) for locus in loci)
        finally:
            worker.close()
    else:
        chunksize = max(1, len(loci) // (threads * 16))
        with multiprocessing.Pool(
            processes=threads,
            initializer=_init_worker,
            initargs=(normal_bam, tumor_bam, config, reference),
        ) as pool:
            _collect(zip(loci, pool.imap(functools.partial(_call_in_worker, task), loci, chunksize=chunksize)))

    for sample, counter in totals.items():
        logger.debug("%s read exclusions: %s", sample, dict(sorted(counter.items())))
    return [results[locus] for locus in loci]


def prepare_loci(
    *,
    normal_bam: str | Path,
    tumor_bam: str | Path,
    genome: str | Path,
    loci: Iterable[Locus],
) -> List[Locus]:
    """Validate inputs and return unique loci in reference order.

    Every fatal input problem surfaces here, before any scoring starts.
    """
    check_bam_index(normal_bam)
    check_bam_index(tumor_bam)
    check_fasta_index(genome)

    unique = list(dict.fromkeys(loci))
    if not unique:
        raise InputError("The loci file contains no loci")

    chroms = {locus.chrom for locus in unique}
    ref_order = fasta_contigs(genome)
    check_contigs(chroms, ref_order, source="reference FASTA")
    check_contigs(chroms, bam_contigs(normal_bam), source="normal BAM")
    check_contigs(chroms, bam_contigs(tumor_bam), source="tumor BAM")

    return sort_loci(unique, ref_order)


def detect_instability(
    *,
    normal_bam: str | Path,
    tumor_bam: str | Path,
    genome: str | Path,
    loci: Iterable[Locus] | str | Path,
    config: DetectConfig,
    threads: int = 1,
    progress: bool = True,
) -> InstabilityReport:
    """Score every locus and aggregate into a genome-wide instability report."""
    get_metric(config.metric)
    if isinstance(loci, (str, Path)):
        loci = read_loci(loci)
    ordered = prepare_loci(normal_bam=normal_bam, tumor_bam=tumor_bam, genome=genome, loci=loci)
    logger.info("Scoring %d loci with %d worker(s)", len(ordered), max(1, threads))

    scores = _run_per_locus(
        ordered,
        _score_task,
        normal_bam=str(normal_bam),
        tumor_bam=str(tumor_bam),
        config=config,
        reference=str(genome),
        threads=threads,
        progress=progress,
    )
    report = aggregate_scores(scores, msi_threshold=config.msi_threshold)
    logger.info(
        "Loci: %d stable, %d unstable, %d indeterminate; aggregate score %s (%s)",
        report.n_stable,
        report.n_unstable,
        report.n_indeterminate,
        "NA" if report.aggregate_score is None else f"{report.aggregate_score:.4f}",
        report.status,
    )
    return report


def count_repeats(
    *,
    normal_bam: str | Path,
    tumor_bam: str | Path,
    genome: str | Path,
    loci: Iterable[Locus] | str | Path,
    config: DetectConfig,
    threads: int = 1,
    progress: bool = True,
) -> List[LocusObservation]:
    """Per-locus repeat-length distributions for both samples, in reference order."""
    if isinstance(loci, (str, Path)):
        loci = read_loci(loci)
    ordered = prepare_loci(normal_bam=normal_bam, tumor_bam=tumor_bam, genome=genome, loci=loci)
    return _run_per_locus(
        ordered,
        _observe_task,
        normal_bam=str(normal_bam),
        tumor_bam=str(tumor_bam),
        config=config,
        reference=str(genome),
        threads=threads,
        progress=progress,
    )
