"""Fatal input errors.

Anything raised from here aborts a run before scoring begins. Expected,
high-frequency conditions (reads failing quality gates, loci with too little
coverage) are never raised; they are recorded in the output data instead.
"""

from __future__ import annotations

from typing import Optional


class InputError(ValueError):
    """Raised when an input file or record cannot be used."""

    def __init__(self, message: str, *, record: Optional[str] = None) -> None:
        if record is not None:
            message = f"{message}\n  offending record: {record}"
        super().__init__(message)
        self.record = record


class LociFileError(InputError):
    """Malformed row in a loci BED file."""


class MissingContigError(InputError):
    """A requested contig is absent from the reference or an alignment file."""


class MissingIndexError(InputError):
    """A BAM/CRAM or FASTA file has no index."""
