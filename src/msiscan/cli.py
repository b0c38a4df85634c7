from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import ScanConfig, DetectConfig, DEFAULT_MIN_REPEATS, parse_min_repeats
from .detector import count_repeats, detect_instability, prepare_loci
from .errors import InputError
from .finder import run_repeat_finder
from .loci import read_loci
from .plotting import plot_class_counts, plot_difference_hist
from .report import render_report, report_summary, write_counts_tsv, write_report_tsv
from .scoring import DISTANCE_METRICS
from .toy_data import make_toy_data
from .utils import ensure_outdir, write_json

EXIT_OK = 0
EXIT_ERROR = 2
EXIT_UNDEFINED = 3


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _min_repeats(value: str):
    try:
        return parse_min_repeats(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Expected an integer or a table like 1:10,2:5,3:4, got: {value}"
        ) from None


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, InputError):
        msg = f"Input error: {err}"
    else:
        msg = f"{err.__class__.__name__}: {err}"

    logging.getLogger("msiscan").debug("Run aborted", exc_info=err)
    sys.stderr.write(msg + "\n")
    sys.stderr.write("No report was written.\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return EXIT_ERROR


def _add_alignment_inputs(p: argparse.ArgumentParser) -> None:
    p.add_argument("-n", "--normal", required=True, type=_path_exists, help="Normal BAM/CRAM (sorted, indexed).")
    p.add_argument("-t", "--tumor", required=True, type=_path_exists, help="Tumor BAM/CRAM (sorted, indexed).")
    p.add_argument(
        "-b", "--loci", required=True, type=_path_exists, help="Loci BED (six columns, name as (UNIT)COUNT)."
    )
    p.add_argument("-g", "--genome", required=True, type=_path_exists, help="Reference FASTA (faidx-indexed).")


def _add_read_filters(p: argparse.ArgumentParser) -> None:
    d = DetectConfig()
    p.add_argument("--min-mapq", type=int, default=d.min_mapq, help="Minimum read mapping quality.")
    p.add_argument(
        "--min-base-quality",
        type=int,
        default=d.min_base_quality,
        help="Minimum base quality of every base across the repeat span.",
    )
    p.add_argument(
        "--min-locus-mean-base-quality",
        type=float,
        default=d.min_locus_mean_base_quality,
        help="Minimum mean base quality across the repeat span.",
    )
    p.add_argument(
        "--min-read-mean-base-quality",
        type=float,
        default=d.min_read_mean_base_quality,
        help="Minimum mean base quality over the whole read.",
    )
    p.add_argument(
        "--min-read-length",
        type=int,
        default=d.min_read_length,
        help="Minimum aligned (non-clipped) read length.",
    )
    p.add_argument(
        "--margin-units",
        type=int,
        default=d.margin_units,
        help="Reads must span the locus plus this many unit lengths on each side.",
    )
    p.add_argument(
        "--min-repeat-reads",
        type=int,
        default=d.min_repeat_reads,
        help="Repeat lengths supported by fewer reads are discarded as outliers.",
    )
    p.add_argument(
        "--outlier-sd",
        type=float,
        default=d.outlier_sd,
        help="Repeat lengths further than this many standard deviations from the mean are discarded.",
    )
    p.add_argument("--keep-duplicates", action="store_true", help="Do not skip duplicate reads.")
    p.add_argument("--include-secondary", action="store_true", help="Include secondary alignments.")
    p.add_argument("--include-supplementary", action="store_true", help="Include supplementary alignments.")
    p.add_argument("--threads", type=int, default=1, help="Number of worker processes.")
    p.add_argument("--no-progress", action="store_true", help="Disable progress bars.")


def _detect_config(args: argparse.Namespace) -> DetectConfig:
    d = DetectConfig()
    return DetectConfig(
        min_mapq=int(args.min_mapq),
        min_base_quality=int(args.min_base_quality),
        min_locus_mean_base_quality=float(args.min_locus_mean_base_quality),
        min_read_mean_base_quality=float(args.min_read_mean_base_quality),
        min_read_length=int(args.min_read_length),
        margin_units=int(args.margin_units),
        min_coverage=int(getattr(args, "min_coverage", d.min_coverage)),
        min_repeat_reads=int(args.min_repeat_reads),
        outlier_sd=float(args.outlier_sd),
        locus_threshold=float(getattr(args, "locus_threshold", d.locus_threshold)),
        msi_threshold=float(getattr(args, "msi_threshold", d.msi_threshold)),
        metric=str(getattr(args, "metric", d.metric)),
        skip_duplicates=not bool(args.keep_duplicates),
        include_secondary=bool(args.include_secondary),
        include_supplementary=bool(args.include_supplementary),
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="msiscan",
        description=(
            "msiscan: microsatellite discovery in a reference genome and "
            "microsatellite instability detection from matched tumor/normal BAMs."
        ),
    )
    p.add_argument("--version", action="version", version=f"msiscan {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, normal/tumor BAMs and loci BED for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # repeat-finder
    # -----------------
    s = ScanConfig()
    f = sub.add_parser(
        "repeat-finder",
        help="Find microsatellite loci in a reference FASTA and write them as BED.",
    )
    f.add_argument("-g", "--genome", required=True, type=_path_exists, help="Reference FASTA.")
    f.add_argument("-o", "--output", required=True, help="Output BED path (.gz supported).")
    f.add_argument(
        "-l", "--min-unit-length", type=int, default=s.min_unit_length, help="Minimum repeat-unit length."
    )
    f.add_argument(
        "-L", "--max-unit-length", type=int, default=s.max_unit_length, help="Maximum repeat-unit length (<= 6)."
    )
    f.add_argument(
        "-r",
        "--min-repeats",
        type=_min_repeats,
        default=None,
        help=(
            "Minimum copies of the unit: one integer for every unit length, or a table "
            "such as 1:10,2:5,3:4. Default: "
            + ",".join(f"{k}:{v}" for k, v in DEFAULT_MIN_REPEATS.items())
        ),
    )
    f.add_argument("-m", "--min-bases", type=int, default=s.min_bases, help="Minimum repeat span in bases.")
    f.add_argument("-M", "--max-bases", type=int, default=s.max_bases, help="Maximum repeat span in bases.")
    f.add_argument(
        "--flank-window",
        type=int,
        default=s.flank_window,
        help="Bases on each side that must not continue the repeat.",
    )
    f.add_argument(
        "--contig",
        action="append",
        default=None,
        help="Restrict the scan to this contig (repeatable).",
    )
    f.add_argument("--threads", type=int, default=1, help="Number of worker processes.")
    f.add_argument("--no-progress", action="store_true", help="Disable progress bars.")
    f.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # detect
    # -----------------
    d = DetectConfig()
    det = sub.add_parser(
        "detect",
        help="Detect microsatellite instability from a matched tumor/normal pair.",
    )
    _add_alignment_inputs(det)
    det.add_argument("-o", "--outdir", required=True, help="Output directory.")
    det.add_argument(
        "--min-coverage",
        type=int,
        default=d.min_coverage,
        help="Minimum qualifying reads in each sample for a locus to be scored.",
    )
    det.add_argument(
        "--locus-threshold",
        type=float,
        default=d.locus_threshold,
        help="Difference above which a locus is classified unstable.",
    )
    det.add_argument(
        "--msi-threshold",
        type=float,
        default=d.msi_threshold,
        help="Aggregate score at or above which the sample is called MSI.",
    )
    det.add_argument(
        "--metric",
        choices=sorted(DISTANCE_METRICS),
        default=d.metric,
        help="Distance between tumor and normal repeat-length distributions.",
    )
    _add_read_filters(det)
    det.add_argument("--no-html", action="store_true", help="Skip plots and the HTML report.")
    det.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    det.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # repeat-counter
    # -----------------
    c = sub.add_parser(
        "repeat-counter",
        help="Count reads per repeat length at each locus for a tumor/normal pair.",
    )
    _add_alignment_inputs(c)
    c.add_argument("-o", "--output", required=True, help="Output TSV path (.gz supported).")
    _add_read_filters(c)
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "msiscan quickstart (copy/paste):",
        "",
        "1) Find microsatellites in a reference:",
        "   msiscan repeat-finder \\",
        "     --genome ref.fa \\",
        "     --output loci.bed",
        "",
        "2) Tumor/normal instability:",
        "   msiscan detect \\",
        "     --normal normal.bam \\",
        "     --tumor tumor.bam \\",
        "     --loci loci.bed \\",
        "     --genome ref.fa \\",
        "     --outdir results/",
        "   Outputs: results/msi_report.tsv, results/summary.json, results/report.html",
        "",
        "3) Raw per-locus repeat-length counts:",
        "   msiscan repeat-counter \\",
        "     --normal normal.bam --tumor tumor.bam \\",
        "     --loci loci.bed --genome ref.fa \\",
        "     --output counts.tsv",
        "",
        "Tip: msiscan make-toy-data --outdir toy/ creates inputs to try these on.",
    ]
    print("\n".join(lines))
    return EXIT_OK


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return EXIT_OK

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return EXIT_OK


def cmd_repeat_finder(args: argparse.Namespace) -> int:
    output = Path(args.output).expanduser().resolve()
    log_path = _log_path(output.parent, "repeat-finder.log")
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("msiscan")
    logger.info("msiscan %s", __version__)

    try:
        config_kwargs = dict(
            min_unit_length=int(args.min_unit_length),
            max_unit_length=int(args.max_unit_length),
            min_bases=int(args.min_bases),
            max_bases=int(args.max_bases),
            flank_window=int(args.flank_window),
        )
        if args.min_repeats is not None:
            config_kwargs["min_repeats"] = args.min_repeats
        config = ScanConfig(**config_kwargs)

        summary = run_repeat_finder(
            fasta_path=args.genome,
            output=output,
            config=config,
            contigs=args.contig,
            threads=int(args.threads),
            progress=not bool(args.no_progress),
        )
        logger.info("Repeat finder summary: %s", json.dumps(summary, sort_keys=True))
        print(str(output))
        return EXIT_OK
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_detect(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "detect.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("msiscan")
    logger.info("msiscan %s", __version__)

    try:
        config = _detect_config(args)

        if args.dry_run:
            loci = prepare_loci(
                normal_bam=args.normal,
                tumor_bam=args.tumor,
                genome=args.genome,
                loci=read_loci(args.loci),
            )
            print("Dry-run: inputs look OK.")
            print(f"Loci to score: {len(loci)}")
            print("Planned outputs:")
            print(f"  msi_report.tsv -> {outdir / 'msi_report.tsv'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_html:
                print(f"  report.html -> {outdir / 'report.html'}")
            return EXIT_OK

        report = detect_instability(
            normal_bam=args.normal,
            tumor_bam=args.tumor,
            genome=args.genome,
            loci=args.loci,
            config=config,
            threads=int(args.threads),
            progress=not bool(args.no_progress),
        )

        outdir = ensure_outdir(outdir)
        report_path = write_report_tsv(outdir / "msi_report.tsv", report)

        summary = report_summary(
            report,
            inputs={
                "normal_bam": args.normal,
                "tumor_bam": args.tumor,
                "loci": args.loci,
                "genome": args.genome,
            },
            config=config.to_dict(),
        )
        summary["version"] = __version__
        write_json(outdir / "summary.json", summary)

        if not args.no_html:
            plots_dir = outdir / "plots"
            plots_dir.mkdir(parents=True, exist_ok=True)
            class_counts_png = plots_dir / "class_counts.png"
            difference_png = plots_dir / "difference_hist.png"

            plot_class_counts(class_counts=summary["counts"], out_png=class_counts_png)
            plot_difference_hist(
                differences=[s.difference for s in report.scores],
                out_png=difference_png,
                locus_threshold=config.locus_threshold,
            )
            html_path = render_report(
                outdir=outdir,
                version=__version__,
                report=report,
                summary=summary,
                plots={
                    "class_counts": str(Path("plots") / class_counts_png.name),
                    "difference_hist": str(Path("plots") / difference_png.name),
                },
            )
            logger.info("HTML report written: %s", html_path)

        logger.info("Report written: %s", report_path)
        print(str(report_path))
        if not report.is_defined:
            sys.stderr.write(
                "Run completed, but no locus had sufficient coverage in both samples; "
                "the aggregate score is undefined.\n"
            )
            return EXIT_UNDEFINED
        return EXIT_OK
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_repeat_counter(args: argparse.Namespace) -> int:
    output = Path(args.output).expanduser().resolve()
    log_path = _log_path(output.parent, "repeat-counter.log")
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("msiscan")
    logger.info("msiscan %s", __version__)

    try:
        observations = count_repeats(
            normal_bam=args.normal,
            tumor_bam=args.tumor,
            genome=args.genome,
            loci=args.loci,
            config=_detect_config(args),
            threads=int(args.threads),
            progress=not bool(args.no_progress),
        )
        output.parent.mkdir(parents=True, exist_ok=True)
        n_rows = write_counts_tsv(output, observations)
        logger.info("Wrote %d rows for %d loci to %s", n_rows, len(observations), output)
        print(str(output))
        return EXIT_OK
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "repeat-finder":
        return cmd_repeat_finder(args)
    if args.cmd == "detect":
        return cmd_detect(args)
    if args.cmd == "repeat-counter":
        return cmd_repeat_counter(args)

    parser.error(f"Unknown command: {args.cmd}")
    return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
