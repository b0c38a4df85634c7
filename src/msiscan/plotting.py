from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, Sequence

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_class_counts(
    *,
    class_counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Locus classifications",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["Stable", "Unstable", "Indeterminate"]
    values = [
        int(class_counts.get("stable", 0)),
        int(class_counts.get("unstable", 0)),
        int(class_counts.get("indeterminate", 0)),
    ]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Loci")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_difference_hist(
    *,
    differences: Sequence[float],
    out_png: str | Path,
    locus_threshold: float,
    title: str = "Per-locus tumor/normal difference",
    nbins: int = 40,
) -> None:
    """Histogram of per-locus differences; indeterminate (NaN) values are skipped."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    values = [d for d in differences if not math.isnan(d)]
    upper = max([1.0] + values)

    plt.figure()
    plt.hist(values, bins=nbins, range=(0.0, upper))
    plt.axvline(locus_threshold, color="red", linestyle="--", label="Instability threshold")
    plt.xlabel("Difference")
    plt.ylabel("Loci")
    plt.title(title)
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
