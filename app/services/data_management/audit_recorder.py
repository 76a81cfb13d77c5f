"""
Audit Recorder - closes out a user's deletion request.

The deletion_requests row is the audit trail for an erasure: it is only ever
updated (status, completed_at), never deleted. mark_completed() runs on the
deletion transaction's connection so completion commits if and only if the
deletion commits.
"""

from datetime import UTC, datetime

import psycopg

from app.db.helpers import execute_query
from app.infrastructure.observability.logging import get_logger
from app.models.domain.deletion_domain import DeletionRequest, DeletionStatus
from app.services.data_management.errors import AuditRecordError

logger = get_logger(__name__)


class AuditRecorder:
    async def mark_completed(
        self,
        request: DeletionRequest,
        *,
        connection: psycopg.AsyncConnection,
        completed_at: datetime | None = None,
    ) -> bool:
        """
        Flip a pending request to completed.

        Returns:
            True if the row was updated, False if it was no longer pending
            (another runner finished it first)

        Raises:
            AuditRecordError: the update itself failed
        """
        completed_at = completed_at or datetime.now(UTC)

        try:
            updated = await execute_query(
                """
                UPDATE deletion_requests
                SET status = %s, completed_at = %s
                WHERE id = %s AND status = %s
                """,
                (
                    DeletionStatus.COMPLETED.value,
                    completed_at,
                    request.id,
                    DeletionStatus.PENDING.value,
                ),
                connection=connection,
            )
        except Exception as e:
            raise AuditRecordError(
                f"Failed to mark deletion request {request.id} completed: {e}", request.user_id
            ) from e

        if updated == 0:
            logger.warning(
                "Deletion request was not pending, left unchanged",
                request_id=request.id,
                user_id=request.user_id,
            )
            return False

        logger.info(
            "Deletion request completed",
            request_id=request.id,
            user_id=request.user_id,
            completed_at=completed_at.isoformat(),
        )
        return True

    def record_failure(self, request: DeletionRequest, error: BaseException | str) -> None:
        """Log a failed attempt. The request stays pending for the next run."""
        logger.warning(
            "Deletion attempt failed, request left pending",
            request_id=request.id,
            user_id=request.user_id,
            error=str(error),
            error_type=type(error).__name__ if isinstance(error, BaseException) else None,
        )


# Singleton instance
audit_recorder = AuditRecorder()
