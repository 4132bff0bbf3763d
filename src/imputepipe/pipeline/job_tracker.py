"""SQLite ledger of submitted scheduler jobs.

Records every job the orchestrator submits (id, stage, name, array
indices, dependency, budget) so operators can inspect a run and so
outstanding jobs can be cancelled after a failure. Completion is never
read from here: artifacts on disk stay the source of truth.
"""

import sqlite3
import logging
import threading
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict, List

from imputepipe.scheduler.jobs import SubmittedJob, compress_indices

logger = logging.getLogger(__name__)


class JobTracker:
    """Tracks the jobs submitted by pipeline runs.

    **Database Schema:**

    SQLite table `submitted_jobs`:

    - job_id: Scheduler job id (primary key)
    - run_id: Orchestrator run that submitted it
    - stage, name: Pipeline stage and job name
    - array_indices: Range expression (e.g. ``1-22``) or NULL
    - depends_on: After-ok dependency ids, comma separated
    - time_limit, mem_per_cpu_mb: Declared budget
    - status: submitted, finished, cancelled
    - submitted_at, updated_at: ISO timestamps

    **Thread Safety:**

    All methods are thread-safe via internal locking.

    **Typical Usage:**

        with JobTracker(layout.ledger_path) as tracker:
            tracker.record_submission(job, run_id)
            ...
            tracker.mark_stage_finished(run_id, "phase")
    """

    def __init__(self, db_path: Path | str):
        """Initialize tracker.

        Parameters
        ----------
        db_path : Path or str
            Path to SQLite database file. Created if doesn't exist.
            Typically: {working_dir}/jobs_{prefix}.db
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = None
        self._lock = threading.Lock()

        self._init_database()
        logger.info(f"Job ledger initialized: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self):
        """Create database schema if it doesn't exist."""
        conn = self._get_connection()

        with self._lock:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS submitted_jobs (
                    job_id TEXT PRIMARY KEY,
                    run_id TEXT,
                    stage TEXT,
                    name TEXT NOT NULL,
                    array_indices TEXT,
                    depends_on TEXT,
                    time_limit TEXT,
                    mem_per_cpu_mb INTEGER,
                    status TEXT DEFAULT 'submitted',
                    submitted_at TEXT,
                    updated_at TEXT
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_run_id ON submitted_jobs(run_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_status ON submitted_jobs(status)")

            conn.commit()

    def record_submission(self, job: SubmittedJob, run_id: Optional[str] = None):
        """Record a job the scheduler accepted."""
        conn = self._get_connection()
        now = datetime.now(timezone.utc).isoformat()

        with self._lock:
            conn.execute("""
                INSERT OR REPLACE INTO submitted_jobs
                (job_id, run_id, stage, name, array_indices, depends_on,
                 time_limit, mem_per_cpu_mb, status, submitted_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'submitted', ?, ?)
            """, (
                job.job_id,
                run_id,
                job.stage,
                job.name,
                compress_indices(job.array_indices) or None,
                ",".join(job.depends_on) or None,
                job.time_limit,
                job.mem_per_cpu_mb,
                now,
                now,
            ))
            conn.commit()

        logger.debug(f"Recorded job {job.job_id} ({job.name})")

    def _set_status(self, where: str, params: tuple, status: str) -> int:
        conn = self._get_connection()
        with self._lock:
            cursor = conn.execute(f"""
                UPDATE submitted_jobs SET status = ?, updated_at = ?
                WHERE status = 'submitted' AND {where}
            """, (status, datetime.now(timezone.utc).isoformat(), *params))
            conn.commit()
            return cursor.rowcount

    def mark_stage_finished(self, run_id: Optional[str], stage: str) -> int:
        """Mark the stage's jobs as no longer queued."""
        return self._set_status("run_id IS ? AND stage = ?", (run_id, stage), "finished")

    def mark_cancelled(self, job_ids: List[str]) -> int:
        if not job_ids:
            return 0
        placeholders = ",".join("?" * len(job_ids))
        return self._set_status(f"job_id IN ({placeholders})", tuple(job_ids), "cancelled")

    def get_job(self, job_id: str) -> Optional[Dict]:
        conn = self._get_connection()
        with self._lock:
            row = conn.execute("SELECT * FROM submitted_jobs WHERE job_id = ?", (job_id,)).fetchone()
            return dict(row) if row else None

    def get_outstanding(self, run_id: Optional[str] = None) -> List[Dict]:
        """Jobs still recorded as submitted, oldest first."""
        conn = self._get_connection()
        query = "SELECT * FROM submitted_jobs WHERE status = 'submitted'"
        params = []
        if run_id:
            query += " AND run_id = ?"
            params.append(run_id)
        query += " ORDER BY submitted_at"

        with self._lock:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def get_statistics(self, run_id: Optional[str] = None) -> Dict:
        """Summary counts of recorded jobs.

        Returns
        -------
        dict
            `total`, `submitted`, `finished`, `cancelled`, `stages`
        """
        conn = self._get_connection()
        where_clause = "WHERE run_id = ?" if run_id else ""
        params = (run_id,) if run_id else ()

        with self._lock:
            row = conn.execute(f"""
                SELECT
                    COUNT(*) as total,
                    SUM(CASE WHEN status = 'submitted' THEN 1 ELSE 0 END) as submitted,
                    SUM(CASE WHEN status = 'finished' THEN 1 ELSE 0 END) as finished,
                    SUM(CASE WHEN status = 'cancelled' THEN 1 ELSE 0 END) as cancelled,
                    COUNT(DISTINCT stage) as stages
                FROM submitted_jobs
                {where_clause}
            """, params).fetchone()
            stats = dict(row) if row else {}

        # SUM over zero rows is NULL
        return {k: (v or 0) for k, v in stats.items()}

    def close(self):
        """Close database connection. Safe to call multiple times."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
