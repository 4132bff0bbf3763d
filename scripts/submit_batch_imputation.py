#!/usr/bin/env python3
"""Submit one imputation job per PLINK dataset that has not been imputed yet.

Usage:
    python scripts/submit_batch_imputation.py settings.json --dry-run
    python scripts/submit_batch_imputation.py settings.json --test
    python scripts/submit_batch_imputation.py settings.json

Source datasets are read from folder.SOURCE_DATA (falls back to
folder.FILESFOLDER); imputed results land in folder.BIN_FOLDER.
"""

import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root / "src"))

from imputepipe.cli.batch import main


if __name__ == "__main__":
    sys.exit(main())
