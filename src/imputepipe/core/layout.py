"""Deterministic artifact paths for one pipeline run.

Every artifact a stage produces is a pure function of (prefix, chromosome,
segment index) and the configured folder roles, which is what makes the
pipeline resumable from whatever is already on disk.
"""

import re
from pathlib import Path

from pydantic import ConfigDict

from imputepipe.schemas.base import ImputeBaseModel
from imputepipe.schemas.internal import InternalConfig

BINARY_EXTENSIONS = (".bed", ".bim", ".fam")


class RunLayout(ImputeBaseModel):
    """Folder roles and path templates for a dataset.

    Built once from the InternalConfig; immutable for the run.
    """

    prefix: str
    working_dir: Path
    chromosome_dir: Path
    scheduler_log_dir: Path
    phasing_log_dir: Path
    segment_dir: Path
    output_dir: Path
    panel_dir: Path
    haplotypes_template: str
    legend_template: str
    genetic_map_template: str

    model_config = ConfigDict(frozen=True, extra='forbid')

    @classmethod
    def from_config(cls, config: InternalConfig) -> "RunLayout":
        folders = config.folders
        panel = config.reference_panel
        return cls(
            prefix=config.prefix,
            working_dir=Path(folders.working_dir),
            chromosome_dir=Path(folders.chromosome_dir),
            scheduler_log_dir=Path(folders.scheduler_log_dir),
            phasing_log_dir=Path(folders.phasing_log_dir),
            segment_dir=Path(folders.segment_dir),
            output_dir=Path(folders.output_dir),
            panel_dir=Path(panel.panel_dir),
            haplotypes_template=panel.haplotypes,
            legend_template=panel.legend,
            genetic_map_template=panel.genetic_map,
        )

    @property
    def folder_roles(self) -> dict[str, Path]:
        return {
            "working": self.working_dir,
            "chromosome": self.chromosome_dir,
            "scheduler_logs": self.scheduler_log_dir,
            "phasing_logs": self.phasing_log_dir,
            "segments": self.segment_dir,
            "output": self.output_dir,
        }

    # ------------------------------------------------------------------
    # Input dataset and QC
    # ------------------------------------------------------------------

    @property
    def dataset_base(self) -> Path:
        return self.working_dir / self.prefix

    def dataset_files(self) -> tuple[Path, ...]:
        return tuple(self.dataset_base.with_name(self.prefix + ext) for ext in BINARY_EXTENSIONS)

    def text_inputs(self) -> tuple[Path, Path]:
        """PED/MAP pair used when no binary set exists yet."""
        return (self.working_dir / f"{self.prefix}.ped", self.working_dir / f"{self.prefix}.map")

    @property
    def duplicate_list(self) -> Path:
        return self.working_dir / f"{self.prefix}.dupvar"

    @property
    def qc_base(self) -> Path:
        return self.working_dir / f"{self.prefix}_QC"

    def qc_files(self) -> tuple[Path, ...]:
        return tuple(self.working_dir / f"{self.prefix}_QC{ext}" for ext in BINARY_EXTENSIONS)

    def sample_source_candidates(self) -> tuple[Path, ...]:
        """Where the sample list can be read from, in order of preference."""
        candidates = [self.working_dir / f"{self.prefix}_QC.fam", self.working_dir / f"{self.prefix}.fam"]
        candidates.extend(self.split_candidates(1, ".fam"))
        return tuple(candidates)

    # ------------------------------------------------------------------
    # Per-chromosome sets
    # ------------------------------------------------------------------

    def split_name(self, chrom) -> str:
        return f"{self.prefix}_CHR{chrom}"

    def split_base(self, chrom) -> Path:
        return self.chromosome_dir / self.split_name(chrom)

    def split_candidates(self, chrom: int, ext: str) -> tuple[Path, ...]:
        """A split artifact may sit in the per-chromosome store or the working root."""
        name = self.split_name(chrom) + ext
        return (self.chromosome_dir / name, self.working_dir / name)

    def haps_candidates(self, chrom: int) -> tuple[Path, ...]:
        return self.split_candidates(chrom, ".haps")

    def haps_path(self, chrom: int) -> Path:
        return self.locate(self.haps_candidates(chrom))

    @staticmethod
    def locate(candidates) -> Path:
        """First existing candidate, or the first (canonical) location."""
        for path in candidates:
            if Path(path).exists():
                return Path(path)
        return Path(candidates[0])

    # ------------------------------------------------------------------
    # Imputed segments
    # ------------------------------------------------------------------

    def segment_path(self, chrom: int, index: int) -> Path:
        return self.segment_dir / f"CHR{chrom}_{self.prefix}.{index}"

    def segment_list_path(self, chrom) -> Path:
        """Ordered list of segment files consumed by concatenation."""
        return self.segment_dir / f"CHR{chrom}_{self.prefix}.list"

    def segment_regex(self, chrom: int | None = None) -> str:
        chrom_part = str(chrom) if chrom is not None else r"\d+"
        return rf"CHR{chrom_part}_{re.escape(self.prefix)}\.\d+"

    # ------------------------------------------------------------------
    # Output store
    # ------------------------------------------------------------------

    def output_name(self, chrom) -> str:
        return f"CHR{chrom}_{self.prefix}"

    def concatenated_path(self, chrom) -> Path:
        return self.output_dir / f"{self.output_name(chrom)}.impute.gz"

    def bgen_path(self, chrom) -> Path:
        return self.output_dir / f"{self.output_name(chrom)}.bgen"

    def converted_base(self, chrom) -> Path:
        return self.output_dir / self.output_name(chrom)

    def converted_files(self, chrom: int) -> tuple[Path, ...]:
        return tuple(self.output_dir / f"{self.output_name(chrom)}{ext}" for ext in BINARY_EXTENSIONS)

    @property
    def sample_path(self) -> Path:
        return self.output_dir / f"{self.prefix}.sample"

    @property
    def merge_list_path(self) -> Path:
        return self.output_dir / f"{self.prefix}_merge_list.txt"

    @property
    def merged_base(self) -> Path:
        return self.output_dir / self.prefix

    def merged_files(self) -> tuple[Path, ...]:
        return tuple(self.output_dir / f"{self.prefix}{ext}" for ext in BINARY_EXTENSIONS)

    # ------------------------------------------------------------------
    # Reference panel
    # ------------------------------------------------------------------

    def reference_haplotypes(self, chrom: int) -> Path:
        return self.panel_dir / self.haplotypes_template.format(chrom=chrom)

    def reference_legend(self, chrom: int) -> Path:
        return self.panel_dir / self.legend_template.format(chrom=chrom)

    def genetic_map(self, chrom: int) -> Path:
        return self.panel_dir / self.genetic_map_template.format(chrom=chrom)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    # Kept in the working root: cleanup may remove the log stores
    @property
    def ledger_path(self) -> Path:
        return self.working_dir / f"jobs_{self.prefix}.db"

    @property
    def pipeline_log_path(self) -> Path:
        return self.working_dir / f"pipeline_{self.prefix}.log"
