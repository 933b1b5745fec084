"""
Periodic housekeeping for import jobs.

- Stuck-job sweep: a PROCESSING job whose lease (``updated_at``) is older
  than ``stuck_job_minutes`` is failed. Processing tasks cannot be
  cancelled, so this is the only recovery path for abandoned work.
- Retention cleanup: COMPLETED/FAILED jobs past ``job_retention_days`` are
  deleted along with their stored files.
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from ..config import Config
from ..errors import StorageError
from ..state_store.sqlite_store import StateStore, utc_iso
from ..storage.base import FileStorage

logger = logging.getLogger(__name__)

STUCK_JOB_MESSAGE = "Processing timed out. Please try uploading again."
DEFAULT_INTERVAL_SECONDS = 15 * 60


class ImportMaintenance:
    def __init__(self, store: StateStore, storage: FileStorage, config: Config):
        self.store = store
        self.storage = storage
        self.config = config

    def sweep_stuck_jobs(self, now: Optional[datetime] = None) -> list[str]:
        """Fail PROCESSING jobs past the lease timeout. Returns their ids."""
        now = now or datetime.now(timezone.utc)
        cutoff = utc_iso(now - timedelta(minutes=self.config.imports.stuck_job_minutes))
        job_ids = self.store.fail_stuck_jobs(cutoff, STUCK_JOB_MESSAGE)
        if job_ids:
            logger.warning("Failed %d stuck import jobs: %s", len(job_ids), ", ".join(job_ids))
        return job_ids

    def cleanup_old_jobs(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Delete finished jobs past retention. Returns job and file counts."""
        now = now or datetime.now(timezone.utc)
        cutoff = utc_iso(now - timedelta(days=self.config.imports.job_retention_days))
        old_jobs = self.store.get_jobs_finished_before(cutoff)
        logger.info("Found %d old jobs to clean up", len(old_jobs))

        deleted_jobs = 0
        deleted_files = 0
        for job in old_jobs:
            try:
                if job.storage_path and self.storage.exists(job.storage_path):
                    self.storage.delete(job.storage_path)
                    deleted_files += 1
            except StorageError as e:
                # Keep the row so the next run retries the file
                logger.warning("Failed to clean up job %s: %s", job.id, e)
                continue
            if self.store.delete_job(job.id):
                deleted_jobs += 1

        logger.info("Cleanup complete: %d jobs, %d files deleted", deleted_jobs, deleted_files)
        return {"jobs": deleted_jobs, "files": deleted_files}

    def job_stats(self, since: Optional[datetime] = None) -> dict[str, Any]:
        return self.store.get_job_stats(utc_iso(since) if since else None)

    def run_once(self, now: Optional[datetime] = None) -> None:
        self.sweep_stuck_jobs(now)
        self.cleanup_old_jobs(now)

    def run_forever(
        self,
        stop_event: threading.Event,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        """Run housekeeping every ``interval_seconds`` until ``stop_event`` is set."""
        logger.info("Import maintenance loop starting (every %d seconds)", interval_seconds)
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error("Error in import maintenance: %s", e, exc_info=True)

            # Sleep in small steps so a stop request is honored quickly
            sleep_until = time.time() + interval_seconds
            while time.time() < sleep_until and not stop_event.is_set():
                time.sleep(min(1.0, max(0.0, sleep_until - time.time())))

        logger.info("Import maintenance loop stopped")
