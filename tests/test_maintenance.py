"""Tests for the stuck-job sweep and retention cleanup."""

import threading
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from ledger_intake.errors import StorageError
from ledger_intake.services import STUCK_JOB_MESSAGE, ImportMaintenance, ImportService
from ledger_intake.services.dispatcher import InlineDispatcher
from ledger_intake.state_store import ImportJobStatus, ImportSource, utc_iso


class QueueingDispatcher(InlineDispatcher):
    def __init__(self):
        super().__init__()
        self.tasks = []

    def submit(self, fn, *args):
        self.tasks.append((fn, args))
        return Future()


def _age_job(store, job_id, **delta):
    """Backdate a job's updated_at."""
    moment = utc_iso(datetime.now(timezone.utc) - timedelta(**delta))
    conn = store._get_connection()
    conn.execute("UPDATE import_jobs SET updated_at = ? WHERE id = ?", (moment, job_id))
    conn.commit()
    conn.close()


class TestStuckJobSweep:
    """Tests for failing abandoned PROCESSING jobs."""

    @pytest.fixture
    def maintenance(self, store, storage, config) -> ImportMaintenance:
        return ImportMaintenance(store, storage, config)

    def test_only_old_processing_jobs(self, maintenance, store):
        stuck = store.create_job("user-1", ImportSource.SCREENSHOT)
        fresh = store.create_job("user-1", ImportSource.SCREENSHOT)
        _age_job(store, stuck.id, minutes=45)

        assert maintenance.sweep_stuck_jobs() == [stuck.id]

        failed = store.get_job(stuck.id)
        assert failed.status == ImportJobStatus.FAILED
        assert failed.error_message == STUCK_JOB_MESSAGE
        assert store.get_job(fresh.id).status == ImportJobStatus.PROCESSING

    def test_sweep_with_explicit_now(self, maintenance, store):
        job = store.create_job("user-1", ImportSource.SCREENSHOT)
        later = datetime.now(timezone.utc) + timedelta(minutes=31)
        assert maintenance.sweep_stuck_jobs(now=later) == [job.id]

    def test_late_result_does_not_revive_swept_job(
        self, config, fake_client, events, caplog
    ):
        """A task finishing after the sweep leaves the job FAILED."""
        dispatcher = QueueingDispatcher()
        service = ImportService.from_config(
            config, dispatcher=dispatcher, client=fake_client, events=events
        )
        row = f"{datetime.now().date().isoformat()},-100,SMS FEE"
        job = service.upload_statement(
            "user-1", f"date,amount,description\n{row}\n".encode(), "a.csv", "text/csv"
        )
        _age_job(service.store, job.id, hours=1)

        maintenance = ImportMaintenance(service.store, service.storage, config)
        assert maintenance.sweep_stuck_jobs() == [job.id]

        for fn, args in dispatcher.tasks:
            fn(*args)

        final = service.get_job("user-1", job.id)
        assert final.status == ImportJobStatus.FAILED
        assert final.error_message == STUCK_JOB_MESSAGE
        assert final.transactions == []
        assert "left PROCESSING" in caplog.text


class TestCleanup:
    """Tests for retention cleanup."""

    @pytest.fixture
    def maintenance(self, store, storage, config) -> ImportMaintenance:
        return ImportMaintenance(store, storage, config)

    def _finished_job(self, store, storage, age_days):
        stored = storage.store("user-1", b"date,amount\n", "old.csv", "text/csv")
        job = store.create_job(
            "user-1", ImportSource.STATEMENT_CSV, file_name="old.csv", storage_path=stored.path
        )
        store.fail_job(job.id, "No transactions found in file")
        _age_job(store, job.id, days=age_days)
        return job, stored

    def test_deletes_old_finished_jobs_and_files(self, maintenance, store, storage):
        old, old_file = self._finished_job(store, storage, age_days=40)
        recent, recent_file = self._finished_job(store, storage, age_days=5)

        assert maintenance.cleanup_old_jobs() == {"jobs": 1, "files": 1}

        assert store.get_job(old.id) is None
        assert not storage.exists(old_file.path)
        assert store.get_job(recent.id) is not None
        assert storage.exists(recent_file.path)

    def test_jobs_under_review_kept(self, maintenance, store):
        job = store.create_job("user-1", ImportSource.SCREENSHOT)
        store.complete_parsing(job.id, [])
        _age_job(store, job.id, days=90)

        assert maintenance.cleanup_old_jobs() == {"jobs": 0, "files": 0}
        assert store.get_job(job.id).status == ImportJobStatus.AWAITING_REVIEW

    def test_file_delete_failure_keeps_job(self, maintenance, store, storage):
        job, _ = self._finished_job(store, storage, age_days=40)

        with patch.object(storage, "delete", side_effect=StorageError("permission denied")):
            assert maintenance.cleanup_old_jobs() == {"jobs": 0, "files": 0}
        assert store.get_job(job.id) is not None

        assert maintenance.cleanup_old_jobs() == {"jobs": 1, "files": 1}

    def test_missing_file_still_deletes_job(self, maintenance, store, storage):
        job, stored = self._finished_job(store, storage, age_days=40)
        storage.delete(stored.path)

        assert maintenance.cleanup_old_jobs() == {"jobs": 1, "files": 0}


class TestMaintenanceLoop:
    def test_stats(self, store, storage, config):
        store.create_job("user-1", ImportSource.SCREENSHOT)
        maintenance = ImportMaintenance(store, storage, config)

        assert maintenance.job_stats()["jobs_total"] == 1
        tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
        assert maintenance.job_stats(since=tomorrow)["jobs_total"] == 0

    def test_run_forever_stops_and_survives_errors(self, store, storage, config, caplog):
        maintenance = ImportMaintenance(store, storage, config)
        stop = threading.Event()

        def once():
            stop.set()
            raise RuntimeError("database is locked")

        with patch.object(maintenance, "run_once", side_effect=once) as run_once:
            maintenance.run_forever(stop, interval_seconds=60)

        run_once.assert_called_once()
        assert "Error in import maintenance" in caplog.text
