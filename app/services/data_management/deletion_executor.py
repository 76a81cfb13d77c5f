"""
Deletion Executor - erases one user's data in a single transaction.

Expands the classification registry into an ordered batch of statements:

1. HARD_DELETE entries -> DELETE ... WHERE a = %s [OR b = %s] [OR email = %s]
2. ANONYMIZE entries   -> one UPDATE per owner column, overwriting that column
                          (and any identifying columns) with the sentinel, then
                          one UPDATE per email column for rows with no user id
3. PRESERVE entries    -> nothing
4. The root user row   -> DELETE, always last

The user's email is read from the root row inside the same transaction,
before anything is removed.

Every statement runs inside one transaction: either all of them commit or
none do. Any failure rolls back and raises DeletionFailed.

Re-running for an already-erased user is a no-op. Deletes match nothing, and
anonymize updates filter on the column they overwrite, so rows already
carrying the sentinel are never touched again.

Usage:
    from app.services.data_management.deletion_executor import deletion_executor

    affected = await deletion_executor.execute(user_id)
    # {"subscriptions": 1, "friend_requests": 3, ..., "user": 1}
"""

import secrets

import psycopg

from app.config import settings
from app.db.helpers import execute_query, fetch_one
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.models.domain.deletion_domain import (
    ClassificationEntry,
    DeletionOperation,
    OperationKind,
    Treatment,
    quote_identifier,
)
from app.services.data_management.classification_registry import (
    ClassificationRegistry,
    classification_registry,
)
from app.services.data_management.errors import DeletionFailed

logger = get_logger(__name__)


class DeletionExecutor:
    """Builds and runs the per-user deletion batch."""

    def __init__(
        self,
        registry: ClassificationRegistry | None = None,
        sentinel: str | None = None,
    ):
        self.registry = registry or classification_registry
        self.sentinel = sentinel or settings.get_deletion_config()["anonymized_sentinel"]

    def build_operations(self, user_id: str, email: str | None = None) -> list[DeletionOperation]:
        """
        Expand the registry into the ordered statement list for one user.

        HARD_DELETE and ANONYMIZE statements come first in registry order;
        the root row delete is always the final statement. Email columns are
        only matched when the user's email is known.
        """
        user_id = self._check_user_id(user_id)
        email = email or None
        if email == self.sentinel:
            email = None

        # One token per erasure: rows of this user stay distinct from other
        # erased users without being linkable back to the id
        owner_token = f"{self.sentinel}:{secrets.token_hex(8)}"

        operations: list[DeletionOperation] = []

        for entry in self.registry.entries_with(Treatment.HARD_DELETE):
            operations.append(self._delete_operation(entry, user_id, email))

        for entry in self.registry.entries_with(Treatment.ANONYMIZE):
            operations.extend(self._anonymize_operations(entry, user_id, email, owner_token))

        operations.append(self._delete_operation(self.registry.root, user_id, None))
        return operations

    async def execute(
        self,
        user_id: str,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> dict[str, int]:
        """
        Run the deletion batch for one user atomically.

        Args:
            user_id: User whose data is erased
            connection: Optional connection with an open transaction; the batch
                then runs in a savepoint so the caller can commit it together
                with its own writes

        Returns:
            dict: rows affected per entity

        Raises:
            DeletionFailed: any statement failed; nothing was changed
        """
        try:
            user_id = self._check_user_id(user_id)
        except ValueError as e:
            raise DeletionFailed(str(user_id), None, e) from e

        logger.info(
            "Starting deletion transaction",
            user_id=user_id,
            registry_version=self.registry.version,
        )

        try:
            if connection is not None:
                async with connection.transaction():
                    affected = await self._erase(connection, user_id)
            else:
                async with db_pool.transaction() as conn:
                    affected = await self._erase(conn, user_id)

        except DeletionFailed as e:
            logger.error(
                "Deletion transaction rolled back",
                user_id=user_id,
                entity=e.entity,
                error=str(e.cause),
            )
            raise
        except Exception as e:
            logger.error("Deletion transaction rolled back", user_id=user_id, error=str(e))
            raise DeletionFailed(user_id, None, e) from e

        logger.info(
            "Deletion transaction committed",
            user_id=user_id,
            total_rows=sum(affected.values()),
            affected=affected,
        )
        return affected

    # =======================================================================
    # PRIVATE METHODS
    # =======================================================================

    def _check_user_id(self, user_id: str) -> str:
        user_id = str(user_id)
        if not user_id:
            raise ValueError("user_id must not be empty")
        if user_id == self.sentinel or user_id.startswith(f"{self.sentinel}:"):
            raise ValueError("user_id collides with the anonymization sentinel")
        return user_id

    async def _erase(self, conn: psycopg.AsyncConnection, user_id: str) -> dict[str, int]:
        email = await self._lookup_email(conn, user_id)
        operations = self.build_operations(user_id, email=email)
        return await self._apply_all(conn, user_id, operations)

    async def _lookup_email(self, conn: psycopg.AsyncConnection, user_id: str) -> str | None:
        """Read the user's email from the root row before it is deleted."""
        root = self.registry.root
        if not root.email_columns:
            return None

        predicate = " OR ".join(f"{quote_identifier(c)} = %s" for c in root.owner_columns)
        try:
            row = await fetch_one(
                f"SELECT {quote_identifier(root.email_columns[0])} AS email "
                f"FROM {quote_identifier(root.entity)} WHERE {predicate}",
                (user_id,) * len(root.owner_columns),
                connection=conn,
            )
        except Exception as e:
            raise DeletionFailed(user_id, root.entity, e) from e

        return (row or {}).get("email") or None

    async def _apply_all(
        self,
        conn: psycopg.AsyncConnection,
        user_id: str,
        operations: list[DeletionOperation],
    ) -> dict[str, int]:
        affected: dict[str, int] = {}
        for operation in operations:
            try:
                count = await execute_query(operation.statement, operation.params, connection=conn)
            except Exception as e:
                raise DeletionFailed(user_id, operation.entity, e) from e
            affected[operation.entity] = affected.get(operation.entity, 0) + max(count, 0)
        return affected

    def _delete_operation(
        self, entry: ClassificationEntry, user_id: str, email: str | None
    ) -> DeletionOperation:
        terms = [(c, user_id) for c in entry.owner_columns]
        if email:
            terms += [(c, email) for c in entry.email_columns]

        predicate = " OR ".join(f"{quote_identifier(c)} = %s" for c, _ in terms)
        return DeletionOperation(
            entity=entry.entity,
            kind=OperationKind.DELETE,
            statement=f"DELETE FROM {quote_identifier(entry.entity)} WHERE {predicate}",
            params=tuple(value for _, value in terms),
        )

    def _anonymize_operations(
        self,
        entry: ClassificationEntry,
        user_id: str,
        email: str | None,
        owner_token: str,
    ) -> list[DeletionOperation]:
        owner_value = owner_token if entry.distinct_owners else self.sentinel
        pii_columns = list(entry.anonymized_columns)

        operations = []
        for owner_column in entry.owner_columns:
            operations.append(
                self._update_operation(
                    entry,
                    [(owner_column, owner_value)] + [(c, self.sentinel) for c in pii_columns],
                    owner_column,
                    user_id,
                )
            )

        # Rows keyed only by email; the owner column is left as it is
        if email:
            for email_column in entry.email_columns:
                operations.append(
                    self._update_operation(
                        entry, [(c, self.sentinel) for c in pii_columns], email_column, email
                    )
                )
        return operations

    @staticmethod
    def _update_operation(
        entry: ClassificationEntry,
        assignments: list[tuple[str, str]],
        match_column: str,
        match_value: str,
    ) -> DeletionOperation:
        set_clause = ", ".join(f"{quote_identifier(c)} = %s" for c, _ in assignments)
        return DeletionOperation(
            entity=entry.entity,
            kind=OperationKind.ANONYMIZE,
            statement=(
                f"UPDATE {quote_identifier(entry.entity)} SET {set_clause} "
                f"WHERE {quote_identifier(match_column)} = %s"
            ),
            params=tuple(value for _, value in assignments) + (match_value,),
        )


# Singleton instance
deletion_executor = DeletionExecutor()
