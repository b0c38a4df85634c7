from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Union

DEFAULT_MIN_REPEATS: Dict[int, int] = {1: 10, 2: 5, 3: 4, 4: 3, 5: 3, 6: 3}


def parse_min_repeats(value: str) -> Union[int, Dict[int, int]]:
    """Parse ``10`` or ``1:10,2:5,3:4`` into an int or a per-unit-length table."""
    value = value.strip()
    if ":" not in value:
        return int(value)
    table: Dict[int, int] = {}
    for item in value.split(","):
        if not item.strip():
            continue
        length, _, count = item.partition(":")
        table[int(length)] = int(count)
    return table


@dataclass(frozen=True)
class ScanConfig:
    """Settings for the repeat finder (scanner + locus filter).

    Attributes
    ----------
    min_unit_length, max_unit_length:
        Range of repeat-unit lengths to search.
    min_repeats:
        Minimum number of unit copies, either one value for every unit length
        or a table keyed by unit length. Lengths missing from a table fall back
        to the largest threshold defined for a longer or equal unit (or 2).
    min_bases, max_bases:
        Bounds on the repeat span in bases.
    flank_window:
        Number of bases inspected on each side of a run.
    """

    min_unit_length: int = 1
    max_unit_length: int = 6
    min_repeats: Union[int, Mapping[int, int]] = field(
        default_factory=lambda: dict(DEFAULT_MIN_REPEATS)
    )
    min_bases: int = 10
    max_bases: int = 100
    flank_window: int = 3

    def __post_init__(self) -> None:
        if not 1 <= self.min_unit_length <= self.max_unit_length <= 6:
            raise ValueError(
                "Unit lengths must satisfy 1 <= min_unit_length <= max_unit_length <= 6"
            )
        if self.min_bases > self.max_bases:
            raise ValueError("min_bases must be <= max_bases")
        if self.flank_window < 0:
            raise ValueError("flank_window must be >= 0")

    def min_repeats_for(self, unit_length: int) -> int:
        if isinstance(self.min_repeats, int):
            return max(2, self.min_repeats)
        if unit_length in self.min_repeats:
            return max(2, int(self.min_repeats[unit_length]))
        longer = [v for k, v in self.min_repeats.items() if k >= unit_length]
        return max(2, max(longer)) if longer else 2

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if not isinstance(self.min_repeats, int):
            d["min_repeats"] = {str(k): int(v) for k, v in sorted(self.min_repeats.items())}
        return d


@dataclass(frozen=True)
class DetectConfig:
    """Settings for pileup extraction and scoring in detect/repeat-counter runs."""

    min_mapq: int = 20
    min_base_quality: int = 10
    min_locus_mean_base_quality: float = 30.0
    min_read_mean_base_quality: float = 25.0
    min_read_length: int = 35
    margin_units: int = 3
    min_coverage: int = 30
    min_repeat_reads: int = 3
    outlier_sd: float = 3.0
    locus_threshold: float = 0.4
    msi_threshold: float = 0.4
    metric: str = "step-wise"
    skip_duplicates: bool = True
    include_secondary: bool = False
    include_supplementary: bool = False

    def __post_init__(self) -> None:
        if self.margin_units < 1:
            raise ValueError("margin_units must be >= 1")
        if self.min_coverage < 1:
            raise ValueError("min_coverage must be >= 1")
        if self.outlier_sd <= 0:
            raise ValueError("outlier_sd must be > 0")

    def margin_for(self, unit_length: int) -> int:
        return unit_length * self.margin_units

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
