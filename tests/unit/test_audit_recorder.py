from datetime import UTC, datetime

import pytest

from app.models.domain.deletion_domain import DeletionRequest, DeletionStatus
from app.services.data_management.audit_recorder import AuditRecorder
from app.services.data_management.errors import AuditRecordError


def _request(fake_db) -> DeletionRequest:
    return DeletionRequest.from_row(fake_db.tables["deletion_requests"][0])


@pytest.mark.asyncio
async def test_mark_completed_updates_status_only(fake_db):
    request = _request(fake_db)
    completed_at = datetime(2026, 10, 19, 2, 0, tzinfo=UTC)

    async with fake_db.transaction() as conn:
        updated = await AuditRecorder().mark_completed(
            request, connection=conn, completed_at=completed_at
        )

    assert updated is True
    row = fake_db.tables["deletion_requests"][0]
    assert row["status"] == DeletionStatus.COMPLETED.value
    assert row["completed_at"] == completed_at
    assert row["user_id"] == request.user_id
    assert row["scheduled_for"] == request.scheduled_for


@pytest.mark.asyncio
async def test_mark_completed_on_non_pending_request(fake_db):
    fake_db.tables["deletion_requests"][0]["status"] = "completed"
    request = _request(fake_db)

    async with fake_db.transaction() as conn:
        updated = await AuditRecorder().mark_completed(request, connection=conn)

    assert updated is False
    assert fake_db.tables["deletion_requests"][0]["completed_at"] is None


@pytest.mark.asyncio
async def test_mark_completed_failure_raises(fake_db):
    request = _request(fake_db)
    fake_db.fail = lambda table, params: table == "deletion_requests"

    with pytest.raises(AuditRecordError):
        async with fake_db.transaction() as conn:
            await AuditRecorder().mark_completed(request, connection=conn)

    assert fake_db.tables["deletion_requests"][0]["status"] == "pending"


def test_record_failure_leaves_request_alone(fake_db):
    request = _request(fake_db)
    before = dict(fake_db.tables["deletion_requests"][0])

    AuditRecorder().record_failure(request, RuntimeError("boom"))

    assert fake_db.tables["deletion_requests"][0] == before
    assert fake_db.statements == []
