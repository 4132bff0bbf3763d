"""`imputepipe` - SLURM orchestration for genotype imputation runs.

Subpackages:
- schemas: Layered pydantic configuration (param < user < CLI)
- scheduler: Job specifications and the batch scheduler client
- pipeline: Partition planning, backpressure, polling, stage sequencing
- contracts: Failure taxonomy and artifact validation
- core: Deterministic run layout (folder roles and file names)
- cli: Run and batch-submission entry points
"""

__version__ = "0.1.0"
