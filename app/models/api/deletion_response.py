from pydantic import BaseModel, ConfigDict, Field

from app.models.domain.deletion_domain import DeletionBatchResult


class DeletionDetail(BaseModel):
    """One user's entry in the batch summary."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    success: bool
    error: str | None = None


class ProcessDeletionsResponse(BaseModel):
    """Response body for the process-deletions cron endpoint."""

    success: bool = True
    processed: int
    errors: int
    details: list[DeletionDetail]

    @classmethod
    def from_result(cls, result: DeletionBatchResult) -> "ProcessDeletionsResponse":
        return cls(
            success=True,
            processed=result.processed,
            errors=result.errors,
            details=[
                DeletionDetail(user_id=o.user_id, success=o.success, error=o.error)
                for o in result.details
            ],
        )
