from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List

import pysam

from .errors import MissingContigError, MissingIndexError

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"
_ALIGNMENT_INDEX_SUFFIXES = (".bai", ".csi", ".crai")


def check_bam_index(bam_path: str | Path) -> None:
    """Ensure a BAM/CRAM has an index; raise MissingIndexError with fix instructions."""
    bam = Path(bam_path)
    for suffix in _ALIGNMENT_INDEX_SUFFIXES:
        if bam.with_suffix(bam.suffix + suffix).exists() or bam.with_suffix(suffix).exists():
            return
    raise MissingIndexError(
        "Alignment file is not indexed. Run: samtools index " + str(bam),
        record=str(bam),
    )


def check_fasta_index(fasta_path: str | Path) -> None:
    """Ensure a FASTA has a .fai index; raise MissingIndexError with fix instructions."""
    fasta = Path(fasta_path)
    if fasta.with_suffix(fasta.suffix + ".fai").exists():
        return
    raise MissingIndexError(
        "Reference FASTA is not indexed. Run: samtools faidx " + str(fasta),
        record=str(fasta),
    )


def fasta_contigs(fasta_path: str | Path) -> List[str]:
    with pysam.FastaFile(str(fasta_path)) as fa:
        return list(fa.references)


def bam_contigs(bam_path: str | Path) -> List[str]:
    with pysam.AlignmentFile(str(bam_path)) as bam:
        return list(bam.references)


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def check_contigs(requested: Iterable[str], available: Iterable[str], *, source: str) -> None:
    """Raise MissingContigError if any requested contig is absent from ``source``."""
    available_set = set(available)
    requested_list = sorted(set(requested))
    missing = [c for c in requested_list if c not in available_set]
    if not missing:
        return

    msg = f"{len(missing)} contig(s) from the loci file are not present in the {source}"
    req_style = detect_contig_style(requested_list)
    avail_style = detect_contig_style(available_set)
    if "unknown" not in (req_style, avail_style) and req_style != avail_style:
        msg += (
            f" (contig naming differs: loci use {req_style} style, {source} uses "
            f"{avail_style} style, e.g. chr1 vs 1)"
        )
    raise MissingContigError(msg, record=", ".join(missing[:10]))
