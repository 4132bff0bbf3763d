"""Pipeline modules.

- orchestrator: Stage sequencing, resume and cleanup
- stages: Stage definitions (units, jobs, artifact requirements)
- poller: Queue drain detection
- governor: Backpressure on the pending queue
- partition: Chromosome and segment planning
- job_tracker: SQLite ledger of submitted jobs
"""

from imputepipe.pipeline.orchestrator import ImputationPipeline
from imputepipe.pipeline.stages import Stage, StageDefinition, build_stage_definitions
from imputepipe.pipeline.poller import CompletionPoller, PollState
from imputepipe.pipeline.governor import BackpressureGovernor, admit
from imputepipe.pipeline.partition import (
    CHROMOSOMES,
    PartitionUnit,
    plan_chromosome_units,
    plan_segment_units,
    already_complete,
)
from imputepipe.pipeline.job_tracker import JobTracker

__all__ = [
    "ImputationPipeline",
    "Stage",
    "StageDefinition",
    "build_stage_definitions",
    "CompletionPoller",
    "PollState",
    "BackpressureGovernor",
    "admit",
    "CHROMOSOMES",
    "PartitionUnit",
    "plan_chromosome_units",
    "plan_segment_units",
    "already_complete",
    "JobTracker",
]
