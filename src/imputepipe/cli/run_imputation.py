"""Core imputation pipeline execution logic.

This module contains the actual pipeline runner, separated from argument parsing.
Scripts are thin wrappers; this is the real implementation.
"""

import sys
import json
import signal
import argparse
import logging
from typing import Optional, Dict, Any

import pandas as pd
from pydantic import ValidationError

from imputepipe.contracts.failure import PipelineError, RunAborted, ValidationFailure
from imputepipe.pipeline.orchestrator import ImputationPipeline
from imputepipe.schemas.initialization import init_runtime_config
from imputepipe.scheduler.client import SchedulerClient


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def run_imputation_pipeline(
    user_config_path: str,
    cli_args: Optional[Dict[str, Any]] = None,
    cancel_on_failure: bool = False,
    verbose: bool = False,
    scheduler: Optional[SchedulerClient] = None,
) -> pd.DataFrame:
    """Execute the imputation pipeline for one dataset.

    1. Loads and resolves configuration (Param < User < CLI)
    2. Instantiates the pipeline with a SLURM client
    3. Blocks until every stage validated, or the first failure

    SIGTERM (e.g. ``scancel`` of the orchestrator job) stops the run the
    same way Ctrl+C does.

    Parameters
    ----------
    user_config_path : str
        Settings JSON file or Python file with a CONFIG dict.
    cli_args : dict, optional
        CLI overrides. Keys: prefix, working_dir, output_dir, account,
        log_level. All optional.
    cancel_on_failure : bool, optional
        Cancel this run's queued jobs if the run fails.
    verbose : bool, optional
        If True, enable DEBUG logging and print full resolved config.
    scheduler : SchedulerClient, optional
        Replaces the SLURM client.

    Returns
    -------
    pandas.DataFrame
        Output-store artifacts after the run.

    Raises
    ------
    FileNotFoundError
        If user_config_path does not exist.
    ValueError
        If configuration validation fails.
    PipelineError
        If a stage fails or the scheduler rejects a job.
    """
    cli_args = dict(cli_args or {})
    if verbose and not cli_args.get("log_level"):
        cli_args["log_level"] = "DEBUG"

    config = init_runtime_config(user_config_path, cli_args)

    print(f"\n{'='*60}")
    print("Genotype Imputation Pipeline")
    print('='*60)
    print(f"Config:    {user_config_path}")
    print(f"Dataset:   {config.prefix}")
    print(f"Reference: {config.reference}")
    print(f"Working:   {config.folders.working_dir}")
    print(f"Output:    {config.folders.output_dir}")
    print('='*60)

    if verbose:
        print("\nFull Internal Configuration:")
        print(json.dumps(config.model_dump(), indent=2, default=str))
        print('='*60)

    pipeline = ImputationPipeline(config, scheduler=scheduler, cancel_on_failure=cancel_on_failure)

    def _on_sigterm(signum, frame):
        pipeline.stop()

    previous = signal.signal(signal.SIGTERM, _on_sigterm)
    try:
        return pipeline.run()
    finally:
        signal.signal(signal.SIGTERM, previous)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the genotype imputation pipeline on SLURM")
    parser.add_argument("config", help="Path to settings.json or a Python config file")
    parser.add_argument("--prefix", help="Override dataset prefix")
    parser.add_argument("--working-dir", help="Override working directory (FILESFOLDER)")
    parser.add_argument("--output-dir", help="Override output directory (BIN_FOLDER)")
    parser.add_argument("--account", help="SLURM account")
    parser.add_argument("--cancel-on-failure", action="store_true",
                        help="Cancel this run's queued jobs if the run fails")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    """Entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    cli_args = {
        "prefix": args.prefix,
        "working_dir": args.working_dir,
        "output_dir": args.output_dir,
        "account": args.account,
    }

    try:
        run_imputation_pipeline(
            args.config,
            cli_args=cli_args,
            cancel_on_failure=args.cancel_on_failure,
            verbose=args.verbose,
        )
    except (KeyboardInterrupt, RunAborted):
        print("\nImputation pipeline interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ValidationFailure as e:
        print(f"\nERROR: stage {e.stage} failed: {e.reason}", file=sys.stderr)
        for line in e.log_tail:
            print(f"  {line}", file=sys.stderr)
        return EXIT_FAILED
    except (PipelineError, ValidationError, ValueError, FileNotFoundError) as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return EXIT_FAILED

    print("\nImputation pipeline completed")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
