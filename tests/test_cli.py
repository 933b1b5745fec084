"""Tests for CLI commands.

Commands run against a temporary config with the model disabled, so only
CSV statements can be imported end to end.
"""

from datetime import date, timedelta

import pytest

from ledger_intake.runner.main import create_cli, main
from ledger_intake.state_store import StateStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("INTAKE_LLM_ENABLED", "OLLAMA_URL", "INTAKE_UPLOAD_DIR", "INTAKE_STATE_DB"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"""
llm:
  enabled: false
storage:
  upload_dir: "{tmp_path / 'uploads'}"
state_db_path: "{tmp_path / 'state.db'}"
"""
    )
    return path


@pytest.fixture
def statement(tmp_path):
    day = (date.today() - timedelta(days=2)).isoformat()
    path = tmp_path / "jan.csv"
    path.write_text(
        "date,amount,description\n"
        f"{day},-5000,POS PURCHASE - NETFLIX\n"
        f"{day},-1200,UBER TRIP LAGOS\n"
    )
    return path


def _run(config_file, *args) -> int:
    return main(["-c", str(config_file), *args])


def _only_job_id(tmp_path) -> str:
    store = StateStore(tmp_path / "state.db")
    jobs, total = store.list_jobs("local")
    assert total == 1
    return jobs[0].id


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        parser = create_cli()
        for command in (
            ["init-config"],
            ["import-file", "a.csv"],
            ["import-screenshots", "a.png", "b.png"],
            ["import-email", "payload.json"],
            ["jobs"],
            ["show", "job-1"],
            ["confirm", "job-1", "--all"],
            ["reject", "job-1", "txn-1"],
            ["sweep"],
            ["cleanup"],
            ["stats"],
        ):
            assert parser.parse_args(command).command == command[0]

    def test_defaults(self):
        args = create_cli().parse_args(["confirm", "job-1"])
        assert args.user == "local"
        assert args.category == "auto"
        assert args.ids == []
        assert args.all is False

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out


class TestInitConfig:
    def test_writes_once(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"

        assert main(["-c", str(path), "init-config"]) == 0
        assert path.exists()
        assert main(["-c", str(path), "init-config"]) == 1
        assert "already exists" in capsys.readouterr().out


class TestImportCommands:
    """Tests for import, review and maintenance commands."""

    def test_import_file_and_review(self, config_file, statement, tmp_path, capsys):
        assert _run(config_file, "import-file", str(statement)) == 0
        out = capsys.readouterr().out
        assert "AWAITING_REVIEW" in out
        assert "Parsed: 2" in out

        job_id = _only_job_id(tmp_path)

        assert _run(config_file, "jobs") == 0
        assert job_id in capsys.readouterr().out

        assert _run(config_file, "show", job_id) == 0
        out = capsys.readouterr().out
        assert "POS PURCHASE - NETFLIX" in out
        assert "PENDING" in out

        assert _run(config_file, "confirm", job_id, "--all") == 0
        assert "Created: 2, Skipped: 0" in capsys.readouterr().out

        assert _run(config_file, "stats") == 0
        out = capsys.readouterr().out
        assert "Ledger entries:      2" in out
        assert "COMPLETED" in out

    def test_reject(self, config_file, statement, tmp_path, capsys):
        _run(config_file, "import-file", str(statement))
        job_id = _only_job_id(tmp_path)
        store = StateStore(tmp_path / "state.db")
        txn_id = store.get_job(job_id).transactions[0].id
        capsys.readouterr()

        assert _run(config_file, "reject", job_id, txn_id) == 0
        assert "Rejected: 1" in capsys.readouterr().out

    def test_missing_file(self, config_file, tmp_path, capsys):
        assert _run(config_file, "import-file", str(tmp_path / "nope.csv")) == 1
        assert "File not found" in capsys.readouterr().out

    def test_failed_job_returns_error(self, config_file, tmp_path, capsys):
        empty = tmp_path / "empty.csv"
        empty.write_text("date,amount,description\n")

        assert _run(config_file, "import-file", str(empty)) == 1
        assert "FAILED" in capsys.readouterr().out

    def test_confirm_needs_ids(self, config_file, capsys):
        assert _run(config_file, "confirm", "job-1") == 1
        assert "Pass transaction ids or --all" in capsys.readouterr().out

    def test_show_unknown_job(self, config_file, capsys):
        assert _run(config_file, "show", "missing") == 1
        assert "❌" in capsys.readouterr().out

    def test_bad_email_payload(self, config_file, tmp_path, capsys):
        payload = tmp_path / "payload.json"
        payload.write_text("{not json")

        assert _run(config_file, "import-email", str(payload)) == 1
        assert "Could not read payload" in capsys.readouterr().out

    def test_maintenance_commands(self, config_file, capsys):
        assert _run(config_file, "sweep") == 0
        assert "Swept: 0" in capsys.readouterr().out
        assert _run(config_file, "cleanup") == 0
        assert "Jobs deleted: 0, Files deleted: 0" in capsys.readouterr().out
