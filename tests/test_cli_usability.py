import json
import subprocess
import sys
from pathlib import Path

from msiscan.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "msiscan"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _detect_args(toy: dict, outdir: Path) -> list[str]:
    return [
        "detect",
        "--normal",
        toy["normal_bam"],
        "--tumor",
        toy["tumor_bam"],
        "--loci",
        toy["loci_bed"],
        "--genome",
        toy["ref_fa"],
        "--outdir",
        str(outdir),
        "--no-progress",
    ]


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "msiscan repeat-finder" in cp.stdout
    assert "msiscan detect" in cp.stdout


def test_make_toy_data_then_find_and_detect(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0
    toy = json.loads(cp.stdout)

    loci_bed = tmp_path / "found.bed"
    cp = _run_cli(["repeat-finder", "--genome", toy["ref_fa"], "--output", str(loci_bed), "--no-progress"])
    assert cp.returncode == 0
    assert loci_bed.exists()
    assert "(AC)12" in loci_bed.read_text()

    outdir = tmp_path / "out"
    cp = _run_cli(_detect_args(toy, outdir))
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "msi_report.tsv").exists()
    assert (outdir / "report.html").exists()

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["status"] == "MSS"
    assert summary["counts"] == {"loci_total": 3, "stable": 2, "unstable": 1, "indeterminate": 0}

    lines = (outdir / "msi_report.tsv").read_text().splitlines()
    assert lines[0].startswith("#chrom\tstart\tend")
    assert lines[-1].startswith("#summary\taggregate_score=0.3333")
    assert len(lines) == 5


def test_detect_undefined_exit_code(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(_detect_args(toy, outdir) + ["--min-coverage", "100", "--no-html"])
    assert cp.returncode == 3
    assert "undefined" in cp.stderr
    report = (outdir / "msi_report.tsv").read_text()
    assert "aggregate_score=NA" in report
    assert "status=undefined" in report
    assert not (outdir / "report.html").exists()


def test_detect_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(_detect_args(toy, outdir) + ["--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert "Loci to score: 3" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_malformed_loci_file_is_fatal(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    bad_bed = tmp_path / "bad.bed"
    bad_bed.write_text("chr1\t100\t116\t(AC)8\n")
    toy["loci_bed"] = str(bad_bed)

    outdir = tmp_path / "out"
    cp = _run_cli(_detect_args(toy, outdir))
    assert cp.returncode == 2
    assert "Input error" in cp.stderr
    assert f"{bad_bed}:1" in cp.stderr
    assert not (outdir / "msi_report.tsv").exists()


def test_contig_mismatch_message(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    bed = tmp_path / "ensembl.bed"
    bed.write_text("1\t100\t116\t(AC)8\t0\t+\n")
    toy["loci_bed"] = str(bed)

    cp = _run_cli(_detect_args(toy, tmp_path / "out"))
    assert cp.returncode == 2
    assert "not present in the reference FASTA" in cp.stderr
    assert "contig naming differs" in cp.stderr


def test_repeat_counter(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    out = tmp_path / "counts.tsv"
    args = _detect_args(toy, tmp_path / "unused")
    args[0] = "repeat-counter"
    i = args.index("--outdir")
    args[i : i + 2] = ["--output", str(out)]

    cp = _run_cli(args)
    assert cp.returncode == 0, cp.stderr
    rows = out.read_text().splitlines()
    assert rows[0] == "locus\trepeat_length\tnormal_reads\ttumor_reads"
    assert any(r.endswith("\t10\t0\t20") for r in rows)
    assert any(r.endswith("\t12\t40\t0") for r in rows)
