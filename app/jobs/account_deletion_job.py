"""
Account Deletion Job - erases users whose deletion grace period has expired.

Each invocation:
1. Selects deletion_requests with status='pending' and scheduled_for <= now
2. Per user, in order:
   a. cancels the live billing subscription (best-effort, logged on failure)
   b. opens one transaction that runs the Deletion Executor and marks the
      request completed
3. Returns {processed, errors, details}

Each user is an independent unit of work: a failure rolls back that user's
transaction, leaves the request pending for the next run, and processing
moves on. A run that is cut short loses no committed work.

Usage:
    from app.jobs.account_deletion_job import account_deletion_job

    result = await account_deletion_job.run()
    result.to_dict()  # {"processed": 3, "errors": 0, "details": [...]}
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from app.config import settings
from app.db.helpers import fetch_all, fetch_one
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.models.domain.deletion_domain import (
    DeletionBatchResult,
    DeletionOutcome,
    DeletionRequest,
    DeletionStatus,
)
from app.services.data_management.audit_recorder import AuditRecorder, audit_recorder
from app.services.data_management.deletion_executor import DeletionExecutor, deletion_executor
from app.services.data_management.entitlement_canceller import (
    EntitlementCanceller,
    entitlement_canceller,
)

logger = get_logger(__name__)


class AccountDeletionJob:
    """
    Batch driver for expired deletion requests.

    Collaborators are injectable; the module-level singleton wires the
    service singletons.
    """

    def __init__(
        self,
        canceller: EntitlementCanceller | None = None,
        executor: DeletionExecutor | None = None,
        recorder: AuditRecorder | None = None,
    ):
        self.entitlement_canceller = canceller or entitlement_canceller
        self.deletion_executor = executor or deletion_executor
        self.audit_recorder = recorder or audit_recorder
        self.is_running = False

    async def run(self, now: datetime | None = None) -> DeletionBatchResult:
        """
        Process every eligible deletion request.

        Args:
            now: Eligibility cutoff (default: current UTC time)

        Returns:
            DeletionBatchResult with one outcome per attempted request
        """
        result = DeletionBatchResult()

        if self.is_running:
            logger.warning("Account deletion job already running, skipping")
            return result

        self.is_running = True
        now = now or datetime.now(UTC)
        start_time = datetime.now(UTC)
        config = settings.get_deletion_config()

        logger.info("Starting account deletion job", cutoff=now.isoformat())

        try:
            async with self._run_lock(config) as acquired:
                if not acquired:
                    logger.warning("Another account deletion run holds the lock, skipping")
                    return result

                requests = await self._fetch_eligible_requests(now, config["batch_limit"])

                if not requests:
                    logger.info("No eligible deletion requests found")
                    return result

                logger.info(
                    "Found eligible deletion requests",
                    count=len(requests),
                    max_concurrency=config["max_concurrency"],
                )

                result.details = await self._process_all(requests, config["max_concurrency"])

        finally:
            self.is_running = False

        duration = (datetime.now(UTC) - start_time).total_seconds()
        logger.info(
            "Account deletion job completed",
            duration_seconds=duration,
            processed=result.processed,
            errors=result.errors,
        )
        return result

    async def process_request(self, request: DeletionRequest) -> DeletionOutcome:
        """
        Erase one user. Never raises; failures come back as an outcome.

        Billing cancellation happens strictly before the deletion transaction
        opens and its outcome does not gate the deletion.
        """
        user_id = request.user_id
        entitlement = None

        try:
            entitlement = await self.entitlement_canceller.cancel_for_user(user_id)
        except Exception as e:
            logger.warning(
                "Entitlement cancellation raised, continuing with deletion",
                user_id=user_id,
                error=str(e),
            )

        try:
            async with db_pool.transaction() as conn:
                affected = await self.deletion_executor.execute(user_id, connection=conn)
                await self.audit_recorder.mark_completed(request, connection=conn)

        except Exception as e:
            self.audit_recorder.record_failure(request, e)
            return DeletionOutcome(
                user_id=user_id,
                success=False,
                error=str(e),
                entitlement=entitlement,
            )

        logger.info(
            "User data erased",
            user_id=user_id,
            request_id=request.id,
            total_rows=sum(affected.values()),
            entitlement=entitlement.status.value if entitlement else None,
        )
        return DeletionOutcome(
            user_id=user_id,
            success=True,
            affected=affected,
            entitlement=entitlement,
        )

    # =======================================================================
    # PRIVATE METHODS
    # =======================================================================

    async def _fetch_eligible_requests(
        self, now: datetime, limit: int
    ) -> list[DeletionRequest]:
        rows = await fetch_all(
            """
            SELECT id, user_id, status, scheduled_for, completed_at
            FROM deletion_requests
            WHERE status = %s
              AND scheduled_for <= %s
            ORDER BY scheduled_for
            LIMIT %s
            """,
            (DeletionStatus.PENDING.value, now, limit),
        )
        return [DeletionRequest.from_row(row) for row in rows]

    async def _process_all(
        self, requests: list[DeletionRequest], max_concurrency: int
    ) -> list[DeletionOutcome]:
        if max_concurrency <= 1:
            return [await self.process_request(request) for request in requests]

        semaphore = asyncio.Semaphore(max_concurrency)

        async def _bounded(request: DeletionRequest) -> DeletionOutcome:
            async with semaphore:
                return await self.process_request(request)

        # gather keeps input order
        return list(await asyncio.gather(*(_bounded(request) for request in requests)))

    @asynccontextmanager
    async def _run_lock(self, config: dict) -> AsyncGenerator[bool, None]:
        """
        Optional session-level advisory lock so overlapping scheduler
        triggers do not both process the same requests.
        """
        if not config["run_lock_enabled"]:
            yield True
            return

        key = config["run_lock_key"]
        async with db_pool.connection() as conn:
            row = await fetch_one(
                "SELECT pg_try_advisory_lock(%s) AS acquired", (key,), connection=conn
            )
            acquired = bool(row and row["acquired"])
            try:
                yield acquired
            finally:
                if acquired:
                    await self._release_run_lock(conn, key)

    async def _release_run_lock(self, conn, key: int) -> None:
        """
        Unlock, or close the connection if that fails: a session lock held by
        a pooled connection would block every later run until it is recycled.
        The pool discards closed connections.
        """
        try:
            await fetch_one("SELECT pg_advisory_unlock(%s)", (key,), connection=conn)
        except Exception as e:
            logger.error(
                "Failed to release account deletion run lock, closing connection",
                lock_key=key,
                error=str(e),
            )
            await conn.close()


# Singleton instance for the cron endpoint and worker
account_deletion_job = AccountDeletionJob()
