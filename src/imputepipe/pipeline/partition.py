"""Partition planning: chromosome units and 1 Mb imputation segments.

Segments run from the first phased marker of a chromosome to the end of
the chromosome, one megabase at a time. The end offset comes from a static
length table (GRCh37, rounded up to whole megabases).
"""

import logging
import math
from pathlib import Path
from typing import Optional

from pydantic import ConfigDict, Field

from imputepipe.contracts.base import require
from imputepipe.core.layout import RunLayout
from imputepipe.schemas.base import ImputeBaseModel

__all__ = [
    'CHROMOSOMES',
    'CHROMOSOME_LENGTH_MB',
    'PartitionUnit',
    'read_first_marker_position',
    'plan_chromosome_units',
    'plan_segment_units',
    'already_complete',
]

logger = logging.getLogger(__name__)

CHROMOSOMES = tuple(range(1, 23))

CHROMOSOME_LENGTH_MB = {
    1: 250, 2: 244, 3: 199, 4: 192, 5: 181, 6: 172, 7: 160, 8: 147,
    9: 142, 10: 136, 11: 136, 12: 134, 13: 116, 14: 108, 15: 103,
    16: 91, 17: 82, 18: 79, 19: 60, 20: 64, 21: 49, 22: 52,
}

BP_PER_MB = 1_000_000


class PartitionUnit(ImputeBaseModel):
    """One unit of fan-out: a whole chromosome or a 1 Mb segment of one.

    ``outputs`` lists the artifacts the unit must leave behind. Each entry is
    a tuple of alternative locations; any one of them satisfies it.
    """

    chromosome: int = Field(ge=1, le=22)
    segment_index: Optional[int] = Field(None, ge=0)
    start_bp: Optional[int] = None
    end_bp: Optional[int] = None
    outputs: tuple[tuple[Path, ...], ...] = ()

    model_config = ConfigDict(frozen=True, extra='forbid')

    @property
    def is_segment(self) -> bool:
        return self.segment_index is not None

    @property
    def label(self) -> str:
        if self.is_segment:
            return f"chr{self.chromosome}:{self.segment_index}Mb"
        return f"chr{self.chromosome}"


def read_first_marker_position(haps_path: Path) -> int:
    """Base-pair position of the first marker in a phased haplotype file.

    The position is the third whitespace-separated column of the first line.

    Raises
    ------
    FileNotFoundError
        If the haplotype file does not exist.
    ValueError
        If the file is empty or the column is not an integer.
    """
    haps_path = Path(haps_path)
    with open(haps_path) as f:
        first_line = f.readline()

    fields = first_line.split()
    if len(fields) < 3:
        raise ValueError(f"{haps_path}: first line has no position column")
    try:
        return int(fields[2])
    except ValueError as e:
        raise ValueError(f"{haps_path}: position '{fields[2]}' is not an integer") from e


def plan_chromosome_units(layout: RunLayout, outputs_for=None) -> list[PartitionUnit]:
    """One unit per autosome.

    Parameters
    ----------
    layout : RunLayout
        Run layout (unused when ``outputs_for`` is given).
    outputs_for : callable, optional
        ``chrom -> tuple of alternative-location tuples`` naming the
        artifacts each unit must produce.
    """
    units = []
    for chrom in CHROMOSOMES:
        outputs = tuple(outputs_for(chrom)) if outputs_for else ()
        units.append(PartitionUnit(chromosome=chrom, outputs=outputs))

    require(len(units) == 22, "Planner contract: 22 chromosome units expected")
    return units


def segment_offsets(first_marker_bp: int, chromosome_length_mb: int) -> range:
    """Megabase offsets start..end inclusive."""
    start_mb = math.floor(first_marker_bp / BP_PER_MB)
    return range(start_mb, chromosome_length_mb + 1)


def plan_segment_units(chromosome: int, chromosome_length_mb: int, layout: RunLayout,
                       first_marker_bp: Optional[int] = None) -> list[PartitionUnit]:
    """One unit per megabase from the first phased marker to the chromosome end.

    Parameters
    ----------
    chromosome : int
        Autosome number.
    chromosome_length_mb : int
        End offset (inclusive), usually ``CHROMOSOME_LENGTH_MB[chromosome]``.
    layout : RunLayout
        Used to locate the ``.haps`` file and to name segment outputs.
    first_marker_bp : int, optional
        Overrides reading the ``.haps`` file.

    Returns
    -------
    list of PartitionUnit
        ``chromosome_length_mb - start_mb + 1`` units (empty when the first
        marker lies beyond the table length).
    """
    if first_marker_bp is None:
        first_marker_bp = read_first_marker_position(layout.haps_path(chromosome))

    units = []
    for index in segment_offsets(first_marker_bp, chromosome_length_mb):
        units.append(PartitionUnit(
            chromosome=chromosome,
            segment_index=index,
            start_bp=index * BP_PER_MB,
            end_bp=(index + 1) * BP_PER_MB,
            outputs=((layout.segment_path(chromosome, index),),),
        ))

    if not units:
        logger.warning("chr%d: first marker at %d bp is past the %d Mb table length",
                       chromosome, first_marker_bp, chromosome_length_mb)
    return units


def already_complete(unit: PartitionUnit, min_bytes: int = 0) -> bool:
    """True when every declared output of ``unit`` exists somewhere.

    Segment outputs are checked only for existence: a segment with no
    markers legitimately produces a tiny file.
    """
    require(bool(unit.outputs), f"{unit.label}: unit declares no outputs")

    for alternatives in unit.outputs:
        if not any(_present(path, min_bytes) for path in alternatives):
            return False
    return True


def _present(path: Path, min_bytes: int) -> bool:
    path = Path(path)
    return path.is_file() and path.stat().st_size >= min_bytes
