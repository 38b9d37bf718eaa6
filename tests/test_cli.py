from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import make_job
from jobgate.approvals import ApprovalContext, ApprovalDraft, ApprovalStore, Requester
from jobgate.cli import main
from jobgate.jobs import JobRegistry
from jobgate.records import SQLiteRecordStore, SyncRecordStoreAdapter
from jobgate.types import EnqueueJobOperation

_PAST = datetime(2020, 1, 1, tzinfo=timezone.utc)


def _write_config(tmp_path: Path) -> tuple[Path, Path]:
    db = tmp_path / "jobgate.db"
    config = tmp_path / "jobgate.yml"
    config.write_text(f'jobs:\n  registry_path: "{db.as_posix()}"\n', encoding="utf-8")
    return config, db


def _seed(db: Path) -> str:
    async def _run() -> str:
        records = SyncRecordStoreAdapter(SQLiteRecordStore(db))
        approvals = ApprovalStore(records, now=lambda: _PAST)
        draft = ApprovalDraft(
            action="jobs.run",
            provider="slack",
            context=ApprovalContext(provider="slack", channel_id="C1"),
            requested_by=Requester(user_id="U1"),
            operation=EnqueueJobOperation(job=make_job("job-1")),
            summary="run it",
        )
        request = await approvals.create(draft, ttl_seconds=60)
        registry = JobRegistry(records, now=lambda: _PAST)
        await registry.save_queued(make_job("old-job"))
        return request.id

    return asyncio.run(_run())


def test_approvals_list_and_sweep(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config, db = _write_config(tmp_path)
    approval_id = _seed(db)

    assert main(["--config", str(config), "approvals", "list", "--json"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert [item["id"] for item in listed] == [approval_id]

    assert main(["--config", str(config), "approvals", "sweep", "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == {"expired": [approval_id]}

    assert main(["--config", str(config), "approvals", "list", "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == []


def test_jobs_clear_before(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config, db = _write_config(tmp_path)
    _seed(db)

    assert main(["--config", str(config), "jobs", "clear-before", "2021-01-01T00:00:00Z"]) == 0
    assert "removed 1 job(s)" in capsys.readouterr().out
    assert SQLiteRecordStore(db).load_by_key("job:old-job") is None


def test_jobs_clear_before_rejects_bad_cutoff(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config, _ = _write_config(tmp_path)
    assert main(["--config", str(config), "jobs", "clear-before", "whenever"]) == 1
    assert "invalid cutoff" in capsys.readouterr().err


def test_jobs_cleanup_by_age(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config, db = _write_config(tmp_path)
    _seed(db)

    assert main(["--config", str(config), "jobs", "cleanup", "--max-age", "30d"]) == 0
    assert "removed 1 job(s): 1 by age, 0 by count" in capsys.readouterr().out


def test_jobs_cleanup_without_limits_fails(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config, _ = _write_config(tmp_path)
    assert main(["--config", str(config), "jobs", "cleanup"]) == 1
    assert "no retention limits" in capsys.readouterr().err


def test_missing_config_file_exits_with_configuration_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["--config", str(tmp_path / "absent.yml"), "jobs", "purge"]) == 2
    assert "configuration error" in capsys.readouterr().err


def test_approvals_show(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config, db = _write_config(tmp_path)
    approval_id = _seed(db)

    assert main(["--config", str(config), "approvals", "show", approval_id]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["summary"] == "run it"
    assert shown["status"] == "pending"

    assert main(["--config", str(config), "approvals", "show", "missing"]) == 1
    assert "not found" in capsys.readouterr().err
