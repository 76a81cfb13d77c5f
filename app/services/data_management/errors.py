"""
Error taxonomy for the account deletion orchestrator.

Per-user errors are recovered by the batch job; registry errors are
configuration problems and stop the service from starting.
"""


class DeletionError(Exception):
    """Base class for account deletion errors."""


class PerUserDeletionError(DeletionError):
    """A failure confined to one user's unit of work."""

    def __init__(self, message: str, user_id: str):
        super().__init__(message)
        self.user_id = user_id


class DeletionFailed(PerUserDeletionError):
    """The deletion transaction for a user failed and was rolled back."""

    def __init__(self, user_id: str, entity: str | None, cause: BaseException):
        where = f" at entity '{entity}'" if entity else ""
        super().__init__(f"Deletion failed for user {user_id}{where}: {cause}", user_id)
        self.entity = entity
        self.cause = cause


class AuditRecordError(PerUserDeletionError):
    """The deletion request could not be marked completed."""


class EntitlementCancelError(DeletionError):
    """The billing provider refused or failed to cancel a subscription."""

    def __init__(self, message: str, provider_reference: str | None = None):
        super().__init__(message)
        self.provider_reference = provider_reference


class RegistryError(DeletionError):
    """The classification registry is malformed."""


class UnknownEntityError(RegistryError):
    """An entity was looked up that the registry does not classify."""

    def __init__(self, entity: str):
        super().__init__(f"Entity '{entity}' is not classified")
        self.entity = entity


class RegistryValidationError(RegistryError):
    """The registry does not match the live database schema."""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report
