"""Typed job specifications and queue snapshots.

Jobs are described by a ``JobSpec`` value object rather than a templated
batch script; the scheduler client renders it into command-line flags.
"""

import hashlib
from fnmatch import fnmatchcase
from typing import Optional

from pydantic import ConfigDict, Field, field_validator

from imputepipe.schemas.base import ImputeBaseModel
from imputepipe.schemas.param import TIME_LIMIT_PATTERN


class _FrozenModel(ImputeBaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid', str_strip_whitespace=True)


def compress_indices(indices) -> str:
    """Render array indices as a scheduler range expression.

    >>> compress_indices([1, 2, 3, 5, 7, 8])
    '1-3,5,7-8'
    """
    values = sorted(set(indices))
    if not values:
        return ""

    parts = []
    start = prev = values[0]
    for value in values[1:]:
        if value == prev + 1:
            prev = value
            continue
        parts.append(f"{start}-{prev}" if prev != start else str(start))
        start = prev = value
    parts.append(f"{start}-{prev}" if prev != start else str(start))
    return ",".join(parts)


def derive_run_tag(prefix: str, working_dir: str) -> str:
    """Deterministic tag for a (dataset, working directory) pair.

    Stable across restarts so a resumed orchestrator recognises the jobs an
    interrupted one left behind.
    """
    digest = hashlib.sha1(str(working_dir).encode()).hexdigest()[:8]
    return f"imputepipe:{prefix}:{digest}"


class JobSpec(_FrozenModel):
    """Everything the scheduler needs to run one job or job array."""

    name: str = Field(min_length=1)
    command: str = Field(min_length=1)
    time_limit: str = Field(pattern=TIME_LIMIT_PATTERN)
    mem_per_cpu_mb: int = Field(ge=1)
    cpus_per_task: int = Field(1, ge=1)
    array_indices: tuple[int, ...] = ()
    depends_on: tuple[str, ...] = ()
    output_path: Optional[str] = None
    error_path: Optional[str] = None
    workdir: Optional[str] = None
    tag: Optional[str] = None
    stage: Optional[str] = None

    @field_validator("array_indices")
    @classmethod
    def indices_positive(cls, v):
        if any(i < 0 for i in v):
            raise ValueError("array indices must be non-negative")
        return tuple(sorted(set(v)))

    @property
    def is_array(self) -> bool:
        return bool(self.array_indices)

    @property
    def array_expression(self) -> str:
        return compress_indices(self.array_indices)


class SubmittedJob(_FrozenModel):
    """A job the scheduler accepted."""

    job_id: str
    name: str
    stage: Optional[str] = None
    array_indices: tuple[int, ...] = ()
    depends_on: tuple[str, ...] = ()
    time_limit: Optional[str] = None
    mem_per_cpu_mb: Optional[int] = None

    @classmethod
    def from_spec(cls, job_id: str, spec: JobSpec) -> "SubmittedJob":
        return cls(
            job_id=job_id,
            name=spec.name,
            stage=spec.stage,
            array_indices=spec.array_indices,
            depends_on=spec.depends_on,
            time_limit=spec.time_limit,
            mem_per_cpu_mb=spec.mem_per_cpu_mb,
        )


class QueueEntry(_FrozenModel):
    """One line of the user's queue listing."""

    job_id: str
    name: str
    state: str
    comment: str = ""

    @property
    def base_id(self) -> str:
        """Array tasks are listed as ``<array id>_<task>``."""
        return self.job_id.split("_", 1)[0]

    @property
    def is_pending(self) -> bool:
        return self.state in ("PD", "PENDING")


class QueueFilter(_FrozenModel):
    """Selects the jobs belonging to one stage of one run.

    All given criteria must match. ``name_pattern`` is a shell-style glob.
    """

    name_pattern: Optional[str] = None
    tag: Optional[str] = None
    job_ids: tuple[str, ...] = ()

    def matches(self, entry: QueueEntry) -> bool:
        if self.tag is not None and entry.comment != self.tag:
            return False
        if self.name_pattern is not None and not fnmatchcase(entry.name, self.name_pattern):
            return False
        if self.job_ids and entry.base_id not in self.job_ids and entry.job_id not in self.job_ids:
            return False
        return True


class QueueState(_FrozenModel):
    """Running and pending counts for a filter at one instant."""

    running: int = Field(0, ge=0)
    pending: int = Field(0, ge=0)

    @property
    def total(self) -> int:
        return self.running + self.pending

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    @classmethod
    def from_entries(cls, entries) -> "QueueState":
        running = pending = 0
        for entry in entries:
            if entry.is_pending:
                pending += 1
            else:
                running += 1
        return cls(running=running, pending=pending)
