"""msiscan: microsatellite instability detection from matched tumor/normal BAMs.

Public API is intentionally small; most users should use the CLI:

    msiscan repeat-finder --genome ref.fa --output loci.bed
    msiscan detect --normal normal.bam --tumor tumor.bam --loci loci.bed --genome ref.fa --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
