from msiscan.config import ScanConfig
from msiscan.loci import LocusFilter, find_loci
from msiscan.models import Locus, RepeatCandidate
from msiscan.scanner import SequenceScanner, iter_periodic_runs
from msiscan.utils import canonical_unit, is_primitive


def test_no_periodic_sequence_yields_nothing():
    scanner = SequenceScanner("ACGTAGCTGATC", ScanConfig(min_repeats=2))
    assert list(scanner) == []


def test_homopolymer_reported_with_shortest_unit():
    cands = list(SequenceScanner("AAAA", ScanConfig(min_repeats=2)))
    assert cands == [RepeatCandidate(start=0, end=4, unit="A", repeat_count=4)]


def test_same_start_keeps_longest_run():
    cands = list(SequenceScanner("AAAGAAAGAAAG", ScanConfig(min_repeats=2)))
    at_zero = [c for c in cands if c.start == 0]
    assert at_zero == [RepeatCandidate(start=0, end=12, unit="AAAG", repeat_count=3)]
    starts = [c.start for c in cands]
    assert starts == sorted(starts)


def test_longer_unit_beats_homopolymer_prefix():
    cands = list(SequenceScanner("GT" + "AAAC" * 3 + "GT", ScanConfig(min_repeats=3)))
    assert cands[0] == RepeatCandidate(start=2, end=14, unit="AAAC", repeat_count=3)

    loci = list(find_loci("chr1", "TGT" + "AAAC" * 3 + "GTG", ScanConfig(min_repeats=3)))
    assert loci == [Locus(chrom="chr1", start=3, end=15, unit="AAAC", ref_count=3)]


def test_candidate_units_are_canonical():
    # the run starts in the CA phase
    runs = list(iter_periodic_runs("GCACACAG", 2))
    assert runs == [RepeatCandidate(start=1, end=7, unit="AC", repeat_count=3)]


def test_runs_truncated_to_whole_copies():
    # 'ACACACA' has period 2 over 7 bases: 3 whole copies
    runs = list(iter_periodic_runs("GACACACAG", 2))
    assert runs == [RepeatCandidate(start=1, end=7, unit="AC", repeat_count=3)]


def test_ambiguous_runs_are_skipped():
    assert list(iter_periodic_runs("NNNNNNNNNNNN", 1)) == []
    assert list(iter_periodic_runs("GTNANANANANAT", 2)) == []


def test_scanner_is_restartable():
    seq = "TGCATG" + "AC" * 8 + "TGGATC"
    scanner = SequenceScanner(seq, ScanConfig())
    assert list(scanner) == list(scanner)


def test_dinucleotide_end_to_end():
    seq = "TGCATG" + "AC" * 8 + "TGGATC"
    loci = list(find_loci("chr1", seq, ScanConfig()))
    assert loci == [Locus(chrom="chr1", start=6, end=22, unit="AC", ref_count=8)]
    assert loci[0].name == "(AC)8"


def test_unit_is_canonicalized():
    seq = "TGCATG" + "CA" * 8 + "TGGATC"
    loci = list(find_loci("chr1", seq, ScanConfig()))
    assert [(l.start, l.end, l.unit, l.ref_count) for l in loci] == [(6, 22, "AC", 8)]


def test_soft_masked_bases_are_scanned():
    seq = "tgc" + "a" * 12 + "tgc"
    loci = list(find_loci("chr1", seq, ScanConfig()))
    assert loci == [Locus(chrom="chr1", start=3, end=15, unit="A", ref_count=12)]


def test_flank_with_n_is_rejected():
    assert list(find_loci("chr1", "TGC" + "A" * 12 + "TGC", ScanConfig()))
    assert list(find_loci("chr1", "TGN" + "A" * 12 + "TGC", ScanConfig())) == []


def test_flank_continuing_the_unit_is_rejected():
    # ACTG x3 followed by ACT: three more bases continue the period
    seq = "CCA" + "ACTG" * 3 + "ACTC" + "GG"
    filt = LocusFilter("chr1", seq, ScanConfig())
    assert filt.flank_continuation(3, 15, 4) == (0, 3)
    assert list(find_loci("chr1", seq, ScanConfig())) == []


def test_partial_continuation_below_window_is_accepted():
    seq = "TGCATG" + "AC" * 8 + "AGGATC"
    loci = list(find_loci("chr1", seq, ScanConfig()))
    assert [(l.start, l.end) for l in loci] == [(6, 22)]


def test_span_bounds():
    seq = "TGC" + "A" * 12 + "TGC"
    assert list(find_loci("chr1", seq, ScanConfig(min_bases=13))) == []
    assert list(find_loci("chr1", seq, ScanConfig(max_bases=11))) == []


def test_enclosed_candidates_are_dropped():
    cfg = ScanConfig(min_repeats=2, min_bases=2, flank_window=0)
    filt = LocusFilter("chr1", "G" * 50, cfg)
    cands = [
        RepeatCandidate(start=10, end=30, unit="AC", repeat_count=10),
        RepeatCandidate(start=12, end=20, unit="AGCT", repeat_count=2),
        RepeatCandidate(start=25, end=35, unit="A", repeat_count=10),
    ]
    out = list(filt.filter(cands))
    assert [(l.start, l.end) for l in out] == [(10, 30), (25, 35)]


def test_filter_is_idempotent():
    seq = "TGCATG" + "AC" * 8 + "TGGATC" + "A" * 12 + "TGC"
    cfg = ScanConfig()
    loci = list(find_loci("chr1", seq, cfg))
    assert len(loci) == 2
    assert list(LocusFilter("chr1", seq, cfg).filter(loci)) == loci


def test_unit_helpers():
    assert canonical_unit("CA") == "AC"
    assert canonical_unit("GCA") == "AGC"
    assert is_primitive("AC")
    assert not is_primitive("ACAC")
    assert not is_primitive("AA")


def test_min_repeats_table_fallback():
    cfg = ScanConfig(min_repeats={1: 10, 2: 5})
    assert cfg.min_repeats_for(1) == 10
    assert cfg.min_repeats_for(2) == 5
    assert cfg.min_repeats_for(3) == 2
    assert ScanConfig(min_repeats=1).min_repeats_for(4) == 2


def test_ag_prefix_does_not_extend_the_run():
    seq = "GTCAG" + "AC" * 8 + "TGTC"
    loci = list(find_loci("chr1", seq, ScanConfig()))
    assert loci == [Locus(chrom="chr1", start=5, end=21, unit="AC", ref_count=8)]
