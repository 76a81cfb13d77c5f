"""
Domain models for the account deletion orchestrator.

Lightweight dataclasses describing deletion requests, the classification
taxonomy, and the results the batch job produces. They carry no I/O so the
registry, executor, job, and API layers can share them.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    """Double-quote a table or column name after checking it is a plain identifier."""
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


class Treatment(str, Enum):
    HARD_DELETE = "hard_delete"
    ANONYMIZE = "anonymize"
    PRESERVE = "preserve"


class DeletionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class OperationKind(str, Enum):
    DELETE = "delete"
    ANONYMIZE = "anonymize"


class CancellationStatus(str, Enum):
    CANCELLED = "cancelled"
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ClassificationEntry:
    """
    How one table is treated when its owner is erased.

    owner_columns are OR-combined: a row belongs to the user when any of them
    holds the user id. email_columns extend that OR with columns holding the
    user's email address, for rows written before the user had an id. On the
    root entry, email_columns names the column the email is read from.
    identifying_columns are extra PII columns that an ANONYMIZE treatment
    overwrites alongside the owner column.

    With distinct_owners, ANONYMIZE writes a per-user token ("deleted:<hex>")
    into the owner columns instead of the bare sentinel, so unique keys that
    include the owner column and COUNT(DISTINCT owner) aggregates survive.
    """

    entity: str
    treatment: Treatment
    owner_columns: tuple[str, ...] = ("user_id",)
    identifying_columns: tuple[str, ...] = ()
    is_root: bool = False
    email_columns: tuple[str, ...] = ()
    distinct_owners: bool = False

    def __post_init__(self):
        if not IDENTIFIER_PATTERN.match(self.entity):
            raise ValueError(f"Invalid entity name: {self.entity!r}")
        if not self.owner_columns:
            raise ValueError(f"Entity {self.entity!r} needs at least one owner column")
        for column in (*self.owner_columns, *self.email_columns, *self.identifying_columns):
            if not IDENTIFIER_PATTERN.match(column):
                raise ValueError(f"Invalid column name {column!r} on {self.entity!r}")
        ownership = (*self.owner_columns, *self.email_columns)
        if len(set(ownership)) != len(ownership):
            raise ValueError(f"Duplicate owner column on {self.entity!r}")
        if self.is_root and self.treatment is not Treatment.HARD_DELETE:
            raise ValueError(f"Root entity {self.entity!r} must be HARD_DELETE")
        if self.is_root and len(self.email_columns) > 1:
            raise ValueError(f"Root entity {self.entity!r} can name one email column at most")

    @property
    def columns(self) -> tuple[str, ...]:
        """Every column the entry references."""
        seen = dict.fromkeys((*self.owner_columns, *self.email_columns, *self.identifying_columns))
        return tuple(seen)

    @property
    def anonymized_columns(self) -> tuple[str, ...]:
        """Non-owner columns an ANONYMIZE update overwrites with the sentinel."""
        return tuple(
            dict.fromkeys(
                c
                for c in (*self.email_columns, *self.identifying_columns)
                if c not in self.owner_columns
            )
        )


@dataclass(frozen=True, slots=True)
class DeletionOperation:
    """A single statement in a user's deletion batch."""

    entity: str
    kind: OperationKind
    statement: str
    params: tuple


@dataclass(slots=True)
class DeletionRequest:
    """Represents a deletion_requests row."""

    id: str
    user_id: str
    status: DeletionStatus
    scheduled_for: date | datetime
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DeletionRequest":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            status=DeletionStatus(row["status"]),
            scheduled_for=row["scheduled_for"],
            completed_at=row.get("completed_at"),
        )


@dataclass(slots=True)
class EntitlementCancellation:
    """Result of asking the billing provider to cancel a user's subscription."""

    user_id: str
    status: CancellationStatus
    provider_reference: str | None = None
    error: str | None = None


@dataclass(slots=True)
class DeletionOutcome:
    """Per-user result of one batch run."""

    user_id: str
    success: bool
    error: str | None = None
    affected: dict[str, int] = field(default_factory=dict)
    entitlement: EntitlementCancellation | None = None

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"userId": self.user_id, "success": self.success}
        if self.error is not None:
            detail["error"] = self.error
        return detail


@dataclass(slots=True)
class DeletionBatchResult:
    """Aggregated result of a batch run."""

    details: list[DeletionOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for outcome in self.details if outcome.success)

    @property
    def errors(self) -> int:
        return sum(1 for outcome in self.details if not outcome.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "errors": self.errors,
            "details": [outcome.to_detail() for outcome in self.details],
        }
