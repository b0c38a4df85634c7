from __future__ import annotations

import logging
import multiprocessing
import time
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pysam
from tqdm import tqdm

from .config import ScanConfig
from .errors import MissingContigError
from .loci import find_loci, write_loci
from .models import Locus

logger = logging.getLogger(__name__)


def ensure_faidx(ref_fa: str | Path) -> None:
    fai = Path(str(ref_fa) + ".fai")
    if fai.exists():
        return
    logger.info("Creating FASTA index: %s", fai)
    pysam.faidx(str(ref_fa))


def _scan_contig(job: Tuple[str, str, ScanConfig]) -> Tuple[str, int, List[Locus]]:
    fasta_path, chrom, config = job
    with pysam.FastaFile(fasta_path) as fa:
        seq = fa.fetch(chrom)
    return chrom, len(seq), list(find_loci(chrom, seq, config))


def iter_contig_loci(
    fasta_path: str | Path,
    config: ScanConfig,
    *,
    contigs: Optional[Sequence[str]] = None,
    threads: int = 1,
) -> Iterator[Tuple[str, int, List[Locus]]]:
    """Yield (contig, length, loci) per contig in FASTA order.

    With ``threads > 1`` contigs are scanned in a process pool; results are
    still yielded in FASTA order.
    """
    fasta_path = str(fasta_path)
    with pysam.FastaFile(fasta_path) as fa:
        available = list(fa.references)

    if contigs:
        missing = [c for c in contigs if c not in available]
        if missing:
            raise MissingContigError(
                "Requested contig(s) not present in the reference FASTA",
                record=", ".join(missing),
            )
        wanted = set(contigs)
        order = [c for c in available if c in wanted]
    else:
        order = available

    jobs = [(fasta_path, chrom, config) for chrom in order]
    if threads <= 1 or len(jobs) <= 1:
        for job in jobs:
            yield _scan_contig(job)
        return

    with multiprocessing.Pool(processes=min(threads, len(jobs))) as pool:
        yield from pool.imap(_scan_contig, jobs)


def run_repeat_finder(
    *,
    fasta_path: str | Path,
    output: str | Path,
    config: ScanConfig,
    contigs: Optional[Sequence[str]] = None,
    threads: int = 1,
    progress: bool = True,
) -> Dict[str, object]:
    """Scan a reference FASTA for microsatellites and write them as BED.

    The BED is written only after every contig has been scanned.
    """
    t0 = time.time()
    ensure_faidx(fasta_path)

    loci: List[Locus] = []
    bases_scanned = 0
    it: Iterable[Tuple[str, int, List[Locus]]] = iter_contig_loci(
        fasta_path, config, contigs=contigs, threads=threads
    )
    if progress:
        it = tqdm(it, unit="contig", desc="Scanning reference")

    for chrom, length, contig_loci in it:
        logger.info("%s: %d loci in %d bases", chrom, len(contig_loci), length)
        bases_scanned += length
        loci.extend(contig_loci)

    out_path = Path(output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    n_written = write_loci(out_path, loci)

    by_unit_length = Counter(locus.unit_length for locus in loci)
    summary = {
        "fasta_path": str(fasta_path),
        "output": str(out_path),
        "bases_scanned": bases_scanned,
        "loci_written": n_written,
        "loci_by_unit_length": {str(k): v for k, v in sorted(by_unit_length.items())},
        "config": config.to_dict(),
        "runtime_seconds": float(time.time() - t0),
    }
    logger.info("Wrote %d loci to %s", n_written, out_path)
    return summary
