"""Imputation pipeline user configuration.

This is the user-facing configuration file. Modify settings here to customize
the pipeline behavior. Advanced settings are in src/imputepipe/schemas/param.py

Usage:
    python scripts/run_imputation_pipeline.py scripts/user_config.py
    python scripts/run_imputation_pipeline.py scripts/user_config.py --prefix COHORT_B
"""

CONFIG = {
    # ========================================================================
    # DATASET
    # ========================================================================
    "prefix": "COHORT",           # PLINK dataset name (COHORT.bed/.bim/.fam)
    "ref": "1000GP_Phase3",       # Reference panel label

    # ========================================================================
    # FOLDERS (unset roles are created under FILESFOLDER)
    # ========================================================================
    "folder": {
        "FILESFOLDER": "/scratch/impute/",
        "GWAS_BY_CHR": "/scratch/impute/GWAS_BY_CHR/",
        "SLURM_IMPUTE_LOG": "/scratch/impute/SLURM_IMPUTE_LOG/",
        "SHAPEIT_IMPUTE_LOG": "/scratch/impute/SHAPEIT_IMPUTE_LOG/",
        "BIN_FOLDER": "/scratch/impute/BIN/",
        "SOURCE_DATA": None,      # Batch only: folder scanned for datasets
    },
    "REFERENCE_PANEL_DIR": "/shared/reference/1000GP_Phase3",

    # ========================================================================
    # SCHEDULER
    # ========================================================================
    "ACCOUNT": None,              # SLURM account
    "PARTITION": None,
    "MAX_PENDING": 100,           # Pause submission while this many jobs pend
    "POLL_INTERVAL_SEC": 300,     # Seconds between queue polls

    # ========================================================================
    # CLEANUP
    # ========================================================================
    "CLEANUP": True,              # Remove intermediates after the run
    "CLEANUP_CHR_FILES": False,   # Also remove per-chromosome outputs
    "CLEANUP_ON_FAILURE": False,  # Remove intermediates even when a stage fails
    # Note: per-stage resources, QC thresholds and validation limits are
    # configured in src/imputepipe/schemas/param.py
}
