#!/usr/bin/env python3
"""Genotype Imputation Pipeline Runner.

Usage:
    python scripts/run_imputation_pipeline.py scripts/user_config.py
    python scripts/run_imputation_pipeline.py settings.json --prefix COHORT_A
    python scripts/run_imputation_pipeline.py settings.json --working-dir /scratch/impute -v

Note: User config in scripts/user_config.py (or a settings.json), expert
defaults in src/imputepipe/schemas/param.py
"""

import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root / "src"))

from imputepipe.cli.run_imputation import main


if __name__ == "__main__":
    sys.exit(main())
