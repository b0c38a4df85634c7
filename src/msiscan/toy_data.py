from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import pysam

from .loci import write_loci
from .models import Locus
from .utils import ensure_outdir, write_json

_CONTIG = "chr1"
_READ_LENGTH = 100
_READS_PER_LOCUS = 40
_FLANK_LENGTH = 150

# (unit, reference copies, tumor copies per read pattern)
_PLANTED: Sequence[Tuple[str, int, Sequence[int]]] = (
    ("A", 14, (14,)),
    ("AC", 12, (10, 14)),
    ("AGC", 8, (8,)),
)


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _flank(rng: random.Random, length: int) -> str:
    """Random bases with no base equal to either of the two before it."""
    out: List[str] = []
    for _ in range(length):
        choices = [b for b in "ACGT" if b not in out[-2:]]
        out.append(rng.choice(choices))
    return "".join(out)


def _build_reference(rng: random.Random) -> Tuple[str, List[Locus]]:
    parts: List[str] = [_flank(rng, _FLANK_LENGTH)]
    loci: List[Locus] = []
    pos = _FLANK_LENGTH
    for unit, copies, _tumor in _PLANTED:
        # 'T' on both sides breaks the periodicity of every planted unit.
        parts.append("T")
        pos += 1
        loci.append(Locus(chrom=_CONTIG, start=pos, end=pos + len(unit) * copies, unit=unit, ref_count=copies))
        parts.append(unit * copies)
        pos += len(unit) * copies
        parts.append("T")
        pos += 1
        parts.append(_flank(rng, _FLANK_LENGTH))
        pos += _FLANK_LENGTH
    return "".join(parts), loci


def make_allele_read(
    name: str,
    ref_seq: str,
    locus: Locus,
    read_start: int,
    copies: int,
    *,
    reference_id: int = 0,
    mapq: int = 60,
    read_length: int = _READ_LENGTH,
) -> pysam.AlignedSegment:
    """An aligned read carrying ``copies`` units at ``locus``.

    Extra copies are encoded as an insertion at the end of the repeat and
    missing copies as a deletion, so the CIGAR stays consistent with the
    reference.
    """
    unit = ref_seq[locus.start : locus.start + locus.unit_length]
    prefix = ref_seq[read_start : locus.start]
    delta = (copies - locus.ref_count) * locus.unit_length

    if delta >= 0:
        head = locus.end - read_start
        tail = read_length - head - delta
        seq = prefix + unit * copies + ref_seq[locus.end : locus.end + tail]
        cigar = [(0, head), (1, delta), (0, tail)] if delta else [(0, read_length)]
    else:
        head = locus.start - read_start + copies * locus.unit_length
        tail = read_length - head
        seq = prefix + unit * copies + ref_seq[locus.end : locus.end + tail]
        cigar = [(0, head), (2, -delta), (0, tail)]

    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 0
    a.reference_id = reference_id
    a.reference_start = read_start
    a.mapping_quality = mapq
    a.cigartuples = [(op, n) for op, n in cigar if n > 0]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def _write_bam(path: Path, header: Dict, reads: List[pysam.AlignedSegment]) -> None:
    reads.sort(key=lambda r: r.reference_start)
    with pysam.AlignmentFile(str(path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(path))


def make_toy_data(*, outdir: str | Path, reads_per_locus: int = _READS_PER_LOCUS) -> Dict[str, str]:
    """Create a tiny reference, normal/tumor BAMs and a loci BED for demos/tests.

    The reference carries three planted microsatellites: (A)14, (AC)12 and
    (AGC)8. Normal reads match the reference everywhere; tumor reads at the
    (AC)12 locus are split evenly between 10 and 14 copies.

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(7)

    ref_seq, loci = _build_reference(rng)
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, _CONTIG, ref_seq)
    pysam.faidx(str(ref_fa))

    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": _CONTIG, "LN": len(ref_seq)}],
    }

    normal_reads: List[pysam.AlignedSegment] = []
    tumor_reads: List[pysam.AlignedSegment] = []
    for li, (locus, (_unit, copies, tumor_copies)) in enumerate(zip(loci, _PLANTED)):
        for i in range(reads_per_locus):
            read_start = locus.start - 30 - (i % 20)
            normal_reads.append(
                make_allele_read(f"n{li}_{i}", ref_seq, locus, read_start, copies)
            )
            tumor_reads.append(
                make_allele_read(
                    f"t{li}_{i}", ref_seq, locus, read_start, tumor_copies[i % len(tumor_copies)]
                )
            )

    normal_bam = outdir_p / "normal.bam"
    tumor_bam = outdir_p / "tumor.bam"
    _write_bam(normal_bam, header, normal_reads)
    _write_bam(tumor_bam, header, tumor_reads)

    loci_bed = outdir_p / "loci.bed"
    write_loci(loci_bed, loci)

    summary = {
        "ref_fa": str(ref_fa),
        "normal_bam": str(normal_bam),
        "tumor_bam": str(tumor_bam),
        "loci_bed": str(loci_bed),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
