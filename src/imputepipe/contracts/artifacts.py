"""Output validation: artifact existence as the stage completion oracle.

After the Completion Poller sees a stage's queue drain, the stage is only
considered satisfied once every declared artifact class validates here.
The scheduler exposes no reliable terminal-state callback, so persisted
files are the source of truth.
"""

import re
import logging
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ConfigDict, Field, model_validator

from imputepipe.schemas.base import ImputeBaseModel

__all__ = [
    'VerdictStatus',
    'CompletionVerdict',
    'ArtifactRequirement',
    'artifact_ok',
    'count_lines',
    'validate_artifacts',
]

logger = logging.getLogger(__name__)


class VerdictStatus(str, Enum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    FAILED = "failed"


class CompletionVerdict(ImputeBaseModel):
    """Tri-state outcome of polling plus artifact validation for one stage."""

    status: VerdictStatus
    reason: str = ""
    found: Optional[int] = None
    required: Optional[int] = None
    details: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    @classmethod
    def pending(cls, reason: str = "") -> "CompletionVerdict":
        return cls(status=VerdictStatus.PENDING, reason=reason)

    @classmethod
    def satisfied(cls, found: int | None = None, required: int | None = None) -> "CompletionVerdict":
        return cls(status=VerdictStatus.SATISFIED, found=found, required=required)

    @classmethod
    def failed(cls, reason: str, found: int | None = None, required: int | None = None,
               details: Iterable[str] = ()) -> "CompletionVerdict":
        return cls(status=VerdictStatus.FAILED, reason=reason, found=found,
                   required=required, details=tuple(details))

    @property
    def is_satisfied(self) -> bool:
        return self.status == VerdictStatus.SATISFIED

    @property
    def is_failed(self) -> bool:
        return self.status == VerdictStatus.FAILED


class ArtifactRequirement(ImputeBaseModel):
    """One class of artifact a stage declares.

    Artifacts are given either explicitly (``expected``: one entry per
    artifact, each a tuple of alternative locations) or by a regular
    expression matched against file names in ``directory``.

    An artifact counts as found only when it exists and meets ``min_bytes``
    and ``min_lines``.
    """

    description: str
    expected: tuple[tuple[Path, ...], ...] = ()
    directory: Optional[Path] = None
    pattern: Optional[str] = None
    min_count: Optional[int] = Field(None, ge=0)
    min_bytes: int = Field(0, ge=0)
    min_lines: int = Field(0, ge=0)

    model_config = ConfigDict(frozen=True, extra='forbid')

    @model_validator(mode="after")
    def check_source(self):
        """Exactly one way of locating artifacts must be given."""
        by_pattern = self.directory is not None and self.pattern is not None
        if bool(self.expected) == by_pattern:
            raise ValueError("give either 'expected' paths or 'directory' + 'pattern'")
        if by_pattern and self.min_count is None:
            raise ValueError("pattern requirements need an explicit min_count")
        return self

    @property
    def required_count(self) -> int:
        if self.min_count is not None:
            return self.min_count
        return len(self.expected)


def count_lines(path: Path, limit: int | None = None) -> int:
    """Count lines in ``path``, stopping early once ``limit`` is reached."""
    count = 0
    with open(path, "rb") as f:
        for _ in f:
            count += 1
            if limit is not None and count >= limit:
                break
    return count


def artifact_ok(path: Path, min_bytes: int = 0, min_lines: int = 0) -> tuple[bool, str]:
    """Check one artifact. Returns (ok, problem description)."""
    path = Path(path)
    if not path.is_file():
        return False, f"{path.name} missing"
    size = path.stat().st_size
    if size < min_bytes:
        return False, f"{path.name} is {size} bytes (< {min_bytes})"
    if min_lines:
        lines = count_lines(path, limit=min_lines)
        if lines < min_lines:
            return False, f"{path.name} has {lines} lines (< {min_lines})"
    return True, ""


def _first_valid(candidates: tuple[Path, ...], req: ArtifactRequirement) -> tuple[Optional[Path], str]:
    problem = ""
    for candidate in candidates:
        ok, why = artifact_ok(candidate, req.min_bytes, req.min_lines)
        if ok:
            return candidate, ""
        # Report size problems in preference to "missing" from an alternate location
        if not problem or "missing" in problem:
            problem = why
    return None, problem


def _check_requirement(req: ArtifactRequirement) -> tuple[int, list[str]]:
    """Return (number of valid artifacts, problems) for one requirement."""
    problems = []
    found = 0

    if req.expected:
        for candidates in req.expected:
            path, why = _first_valid(candidates, req)
            if path is not None:
                found += 1
            else:
                problems.append(why)
        return found, problems

    directory = Path(req.directory)
    if not directory.is_dir():
        return 0, [f"{directory} does not exist"]

    regex = re.compile(req.pattern)
    for entry in sorted(directory.iterdir()):
        if not regex.fullmatch(entry.name):
            continue
        ok, why = artifact_ok(entry, req.min_bytes, req.min_lines)
        if ok:
            found += 1
        else:
            problems.append(why)
    return found, problems


def validate_artifacts(requirements: Iterable[ArtifactRequirement]) -> CompletionVerdict:
    """Validate every artifact class a stage declares.

    Returns
    -------
    CompletionVerdict
        ``failed`` with reason ``"expected N, found M"`` for the first
        requirement that falls short; ``satisfied`` when all hold.
    """
    total_found = 0
    total_required = 0

    for req in requirements:
        found, problems = _check_requirement(req)
        required = req.required_count
        logger.debug("%s: found %d, required %d", req.description, found, required)

        if found < required:
            return CompletionVerdict.failed(
                f"expected {required}, found {found}",
                found=found,
                required=required,
                details=[req.description] + problems[:10],
            )
        total_found += found
        total_required += required

    return CompletionVerdict.satisfied(found=total_found, required=total_required)
