from unittest.mock import AsyncMock

import pytest

from app.jobs import worker
from app.models.domain.deletion_domain import DeletionBatchResult, DeletionOutcome


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_resolve_job_name_defaults_to_account_deletion(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.delenv("WORKER_JOB", raising=False)

    assert worker._resolve_job_name() == "account_deletion"


@pytest.mark.asyncio
async def test_run_account_deletion_manages_pool(monkeypatch):
    pool = AsyncMock()
    verify = AsyncMock()
    job = AsyncMock()
    job.run.return_value = DeletionBatchResult(
        details=[DeletionOutcome(user_id="user-1", success=True)]
    )
    monkeypatch.setattr(worker, "db_pool", pool)
    monkeypatch.setattr(worker, "verify_registry_against_database", verify)
    monkeypatch.setattr(worker, "account_deletion_job", job)

    await worker.run_account_deletion()

    pool.initialize.assert_awaited_once()
    verify.assert_awaited_once()
    job.run.assert_awaited_once()
    pool.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_account_deletion_closes_pool_on_registry_drift(monkeypatch):
    pool = AsyncMock()
    job = AsyncMock()
    monkeypatch.setattr(worker, "db_pool", pool)
    monkeypatch.setattr(
        worker, "verify_registry_against_database", AsyncMock(side_effect=RuntimeError("drift"))
    )
    monkeypatch.setattr(worker, "account_deletion_job", job)

    with pytest.raises(RuntimeError):
        await worker.run_account_deletion()

    job.run.assert_not_awaited()
    pool.close.assert_awaited_once()
