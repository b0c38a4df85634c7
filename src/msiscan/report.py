from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

from jinja2 import Template

from .detector import LocusObservation
from .models import InstabilityReport
from .utils import format_float, open_textmaybe_gzip

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "chrom",
    "start",
    "end",
    "unit",
    "ref_count",
    "tumor_coverage",
    "normal_coverage",
    "difference",
    "classification",
]

COUNTS_COLUMNS = ["locus", "repeat_length", "normal_reads", "tumor_reads"]


def write_report_tsv(path: str | Path, report: InstabilityReport) -> Path:
    """One line per locus in genomic order, then a ``#summary`` line."""
    path = Path(path)
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("#" + "\t".join(REPORT_COLUMNS) + "\n")
        for s in report.scores:
            loc = s.locus
            fh.write(
                f"{loc.chrom}\t{loc.start}\t{loc.end}\t{loc.unit}\t{loc.ref_count}\t"
                f"{s.tumor_coverage}\t{s.normal_coverage}\t{format_float(s.difference)}\t"
                f"{s.classification}\n"
            )
        fh.write(
            f"#summary\taggregate_score={format_float(report.aggregate_score)}\t"
            f"stable={report.n_stable}\tunstable={report.n_unstable}\t"
            f"indeterminate={report.n_indeterminate}\tstatus={report.status}\n"
        )
    return path


def write_counts_tsv(path: str | Path, observations: Iterable[LocusObservation]) -> int:
    """Per-locus, per-repeat-length read counts for normal and tumor."""
    n = 0
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("\t".join(COUNTS_COLUMNS) + "\n")
        for obs in observations:
            normal = obs.normal.counts
            tumor = obs.tumor.counts
            for length in sorted(set(normal) | set(tumor)):
                fh.write(
                    f"{obs.locus.region}\t{length}\t{normal.get(length, 0)}\t{tumor.get(length, 0)}\n"
                )
                n += 1
    return n


def report_summary(report: InstabilityReport, *, inputs: Mapping[str, Any], config: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "inputs": dict(inputs),
        "config": dict(config),
        "aggregate_score": report.aggregate_score,
        "aggregate_defined": report.is_defined,
        "status": report.status,
        "counts": {
            "loci_total": report.n_loci,
            "stable": report.n_stable,
            "unstable": report.n_unstable,
            "indeterminate": report.n_indeterminate,
        },
    }


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>msiscan Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 6px 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    .unstable { color: #b00020; font-weight: bold; }
    .indeterminate { color: #888; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>msiscan Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Normal BAM</th><td><code>{{ inputs.normal_bam }}</code></td></tr>
      <tr><th>Tumor BAM</th><td><code>{{ inputs.tumor_bam }}</code></td></tr>
      <tr><th>Loci</th><td><code>{{ inputs.loci }}</code></td></tr>
      <tr><th>Reference</th><td><code>{{ inputs.genome }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Result</h3>
    <table>
      <tr><th>Aggregate instability score</th><td>{{ aggregate_score }}</td></tr>
      <tr><th>Status</th><td>{{ status }}</td></tr>
      <tr><th>Stable loci</th><td>{{ counts.stable }}</td></tr>
      <tr><th>Unstable loci</th><td>{{ counts.unstable }}</td></tr>
      <tr><th>Indeterminate loci</th><td>{{ counts.indeterminate }}</td></tr>
    </table>
  </div>
</div>

<h2>Settings</h2>
<table>
  <tr><th>Distance metric</th><td>{{ config.metric }}</td></tr>
  <tr><th>Per-locus threshold</th><td>{{ config.locus_threshold }}</td></tr>
  <tr><th>MSI threshold</th><td>{{ config.msi_threshold }}</td></tr>
  <tr><th>Min coverage</th><td>{{ config.min_coverage }}</td></tr>
  <tr><th>Min MAPQ</th><td>{{ config.min_mapq }}</td></tr>
  <tr><th>Min base quality</th><td>{{ config.min_base_quality }}</td></tr>
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Locus classifications</h3>
    <img src="{{ plots.class_counts }}" alt="classification counts">
  </div>
  <div class="card">
    <h3>Per-locus difference</h3>
    <img src="{{ plots.difference_hist }}" alt="difference histogram">
  </div>
</div>

<h2>Loci</h2>
<table>
  <tr><th>Locus</th><th>Repeat</th><th>Tumor cov.</th><th>Normal cov.</th><th>Difference</th><th>Class</th></tr>
  {% for row in rows %}
  <tr class="{{ row.classification }}">
    <td><code>{{ row.region }}</code></td><td>{{ row.name }}</td>
    <td>{{ row.tumor_coverage }}</td><td>{{ row.normal_coverage }}</td>
    <td>{{ row.difference }}</td><td>{{ row.classification }}</td>
  </tr>
  {% endfor %}
</table>
{% if truncated %}<p class="small">Showing the first {{ rows|length }} loci; see <code>msi_report.tsv</code> for all.</p>{% endif %}

<h2>Interpretation notes</h2>
<ul>
  <li>Indeterminate loci lacked coverage in at least one sample and are excluded from the aggregate score.</li>
  <li>An undefined aggregate score means no locus was covered well enough in both samples.</li>
</ul>

<hr>
<p class="small">msiscan {{ version }}</p>
</body>
</html>"""
)

_MAX_HTML_ROWS = 500


def render_report(
    *,
    outdir: str | Path,
    version: str,
    report: InstabilityReport,
    summary: Dict[str, Any],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    rows = [
        {
            "region": s.locus.region,
            "name": s.locus.name,
            "tumor_coverage": s.tumor_coverage,
            "normal_coverage": s.normal_coverage,
            "difference": format_float(s.difference),
            "classification": s.classification,
        }
        for s in report.scores[:_MAX_HTML_ROWS]
    ]

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        inputs=summary.get("inputs", {}),
        config=summary.get("config", {}),
        counts=summary.get("counts", {}),
        aggregate_score=format_float(report.aggregate_score),
        status=report.status,
        plots=plots,
        rows=rows,
        truncated=report.n_loci > _MAX_HTML_ROWS,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
