"""Pipeline contracts: fail-fast enforcement of stage invariants.

This package enforces the guarantees between pipeline stages. External
jobs are opaque; a stage is complete only when its declared artifacts
validate on disk.

Key principle:
- Pydantic validates config correctness
- Artifact requirements validate stage outputs
- require() guards orchestration invariants
"""

from imputepipe.contracts.failure import (
    ContractViolation,
    PipelineError,
    PollingUncertain,
    PreconditionAmbiguous,
    SubmissionError,
    ValidationFailure,
    RunAborted,
)
from imputepipe.contracts.base import require
from imputepipe.contracts.artifacts import (
    ArtifactRequirement,
    CompletionVerdict,
    VerdictStatus,
    validate_artifacts,
)

__all__ = [
    "ContractViolation",
    "PipelineError",
    "PollingUncertain",
    "PreconditionAmbiguous",
    "SubmissionError",
    "ValidationFailure",
    "RunAborted",
    "require",
    "ArtifactRequirement",
    "CompletionVerdict",
    "VerdictStatus",
    "validate_artifacts",
]
