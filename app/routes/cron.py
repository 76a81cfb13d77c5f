"""
Cron API Router - scheduler-invoked maintenance endpoints.

The external scheduler calls these with the shared CRON_SECRET. Once auth
passes the endpoint always answers 200 with a summary; callers inspect
`errors` / `details` for per-user failures.
"""

from fastapi import APIRouter, Depends

from app.auth.cron_secret import cron_auth_dependency
from app.infrastructure.observability.logging import get_logger
from app.jobs.account_deletion_job import account_deletion_job
from app.models.api.deletion_response import ProcessDeletionsResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"])


@router.api_route(
    "/process-deletions",
    methods=["GET", "POST"],
    response_model=ProcessDeletionsResponse,
    response_model_exclude_none=True,
    summary="Process expired account deletion requests",
    description="""
    Erase every user whose deletion grace period has expired.

    Per user: cancel the live subscription (best-effort), then delete or
    anonymize their data and mark the request completed in one transaction.
    A failed user stays pending and is retried on the next invocation.

    **Preserved:** consent log and the deletion requests themselves.
    """,
)
async def process_deletions(_auth: None = Depends(cron_auth_dependency)):
    result = await account_deletion_job.run()

    logger.info(
        "Process deletions invocation finished",
        processed=result.processed,
        errors=result.errors,
    )

    return ProcessDeletionsResponse.from_result(result)
