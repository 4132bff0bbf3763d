"""
Directory setup for the imputation pipeline.

Creates the named folder roles of a run (working root, per-chromosome
store, scheduler and phasing log stores, imputed-segment store, output
store) and names the scheduler log files of each job.
"""

from pathlib import Path

from imputepipe.core.layout import RunLayout


def setup_run_directories(layout: RunLayout, verbose: bool = False):
    """
    Create every folder role of a run.

    Parameters
    ----------
    layout : RunLayout
        Resolved layout of the run.
    verbose : bool
        Print the created directories.

    Returns
    -------
    dict
        Role name -> Path: 'working', 'chromosome', 'scheduler_logs',
        'phasing_logs', 'segments', 'output'
    """
    directories = dict(layout.folder_roles)

    for path in directories.values():
        Path(path).mkdir(parents=True, exist_ok=True)

    if verbose:
        print("\nRun directories:")
        for key, path in directories.items():
            print(f"  {key:15s}: {path}")

    return directories


def get_job_log_paths(layout: RunLayout, job_name: str, array: bool = False, phasing: bool = False):
    """
    Get scheduler stdout/stderr paths for a job.

    Parameters
    ----------
    layout : RunLayout
        Resolved layout of the run.
    job_name : str
        Job name (used as file stem).
    array : bool
        Array jobs get one file pair per task (``%A_%a``).
    phasing : bool
        Phasing jobs log to the phasing log store.

    Returns
    -------
    tuple of str
        (output_path, error_path)

    Example
    -------
    >>> get_job_log_paths(layout, 'shapeit_array', array=True, phasing=True)
    ('.../SHAPEIT_IMPUTE_LOG/shapeit_array_%A_%a.out', '.../SHAPEIT_IMPUTE_LOG/shapeit_array_%A_%a.err')
    """
    log_dir = layout.phasing_log_dir if phasing else layout.scheduler_log_dir
    token = "%A_%a" if array else "%j"
    stem = f"{job_name}_{token}"
    return str(log_dir / f"{stem}.out"), str(log_dir / f"{stem}.err")


def collect_error_tail(log_dirs, lines_per_file: int = 5, max_lines: int = 20):
    """
    Return the last lines of the most recent ``*.err`` files.

    Parameters
    ----------
    log_dirs : iterable of Path
        Directories to search.
    lines_per_file : int
        Lines taken from the end of each file.
    max_lines : int
        Cap on the total number of lines returned.

    Returns
    -------
    list of str
        ``"<file>: <line>"`` entries, newest files first.
    """
    err_files = []
    for log_dir in log_dirs:
        log_dir = Path(log_dir)
        if log_dir.is_dir():
            err_files.extend(p for p in log_dir.glob("*.err") if p.is_file())

    err_files.sort(key=lambda p: p.stat().st_mtime, reverse=True)

    tail = []
    for path in err_files:
        with open(path, errors="replace") as f:
            lines = [line.rstrip("\n") for line in f if line.strip()]
        for line in lines[-lines_per_file:]:
            tail.append(f"{path.name}: {line}")
            if len(tail) >= max_lines:
                return tail
    return tail
