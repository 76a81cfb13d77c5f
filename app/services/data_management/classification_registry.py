"""
Classification Registry - how every user-owned table is treated on erasure.

Each table reachable from a user id appears exactly once with an explicit
treatment:

- HARD_DELETE: rows are physically removed
- ANONYMIZE:   owner/PII columns are overwritten with a sentinel, the row stays
               so aggregate analytics keep their counts. A table whose unique
               keys include the owner column must not use a constant sentinel:
               use HARD_DELETE or distinct_owners=True
- PRESERVE:    never touched (consent log, the deletion requests themselves)

Ownership is declarative: a tuple of columns OR-combined, so bidirectional
relations (sender/receiver, referrer/referred) need no special-case code.

Lookups fail closed: an unclassified entity raises UnknownEntityError. At
startup the registry is checked against information_schema so that a new
table carrying a user column cannot ship without a classification.

IMPORTANT: When you add a user-owned table, add an entry here and bump
REGISTRY_VERSION.

Usage:
    from app.services.data_management.classification_registry import (
        classification_registry,
    )

    classification_registry.treatment_for("friend_requests")  # Treatment.HARD_DELETE
    classification_registry.ownership_predicate("friend_requests")  # ("sender_id", "receiver_id")
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from types import MappingProxyType

from app.config import settings
from app.db.helpers import fetch_all
from app.infrastructure.observability.logging import get_logger
from app.models.domain.deletion_domain import ClassificationEntry, Treatment
from app.services.data_management.errors import (
    RegistryError,
    RegistryValidationError,
    UnknownEntityError,
)

logger = get_logger(__name__)

REGISTRY_VERSION = "2026.10.2"

# Column names that mark a table as holding user-identifying data
IDENTIFYING_COLUMN_PATTERN = re.compile(
    r"^(user_?id|user_email|.+_user_id|sender_id|receiver_id|referrer_id|referred_id|friend_id)$",
    re.IGNORECASE,
)


@dataclass(slots=True)
class RegistryValidationReport:
    """Differences between the registry and the live schema."""

    unclassified_tables: dict[str, list[str]] = field(default_factory=dict)
    missing_entities: list[str] = field(default_factory=list)
    missing_columns: dict[str, list[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not (self.unclassified_tables or self.missing_entities or self.missing_columns)

    def summary(self) -> str:
        parts = []
        if self.unclassified_tables:
            parts.append(f"unclassified tables: {sorted(self.unclassified_tables)}")
        if self.missing_entities:
            parts.append(f"entities missing from schema: {sorted(self.missing_entities)}")
        if self.missing_columns:
            parts.append(f"columns missing from schema: {self.missing_columns}")
        return "; ".join(parts) or "registry matches schema"


class ClassificationRegistry:
    """
    Immutable lookup from entity name to its ClassificationEntry.

    Built once from a list of entries; construction rejects duplicates and
    requires exactly one root entity.
    """

    def __init__(self, entries: Iterable[ClassificationEntry], version: str = REGISTRY_VERSION):
        by_entity: dict[str, ClassificationEntry] = {}
        for entry in entries:
            if entry.entity in by_entity:
                raise RegistryError(f"Entity '{entry.entity}' is classified more than once")
            by_entity[entry.entity] = entry

        roots = [entry for entry in by_entity.values() if entry.is_root]
        if len(roots) != 1:
            raise RegistryError(f"Registry needs exactly one root entity, found {len(roots)}")

        self._entries = MappingProxyType(by_entity)
        self._root = roots[0]
        self.version = version

    @property
    def root(self) -> ClassificationEntry:
        return self._root

    @property
    def entities(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def __contains__(self, entity: str) -> bool:
        return entity in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def entry_for(self, entity: str) -> ClassificationEntry:
        try:
            return self._entries[entity]
        except KeyError:
            raise UnknownEntityError(entity) from None

    def treatment_for(self, entity: str) -> Treatment:
        return self.entry_for(entity).treatment

    def ownership_predicate(self, entity: str) -> tuple[str, ...]:
        return self.entry_for(entity).owner_columns

    def entries_with(self, treatment: Treatment) -> list[ClassificationEntry]:
        """Non-root entries with the given treatment, in registration order."""
        return [
            entry
            for entry in self._entries.values()
            if entry.treatment is treatment and not entry.is_root
        ]

    def validate_against_schema(
        self, columns: Iterable[tuple[str, str]]
    ) -> RegistryValidationReport:
        """
        Compare the registry with (table, column) pairs from the live schema.

        Flags tables that carry an identifying column but are not classified,
        classified entities that do not exist, and referenced columns that do
        not exist on their table.
        """
        schema: dict[str, set[str]] = {}
        for table, column in columns:
            schema.setdefault(table, set()).add(column)

        report = RegistryValidationReport()

        for table, table_columns in sorted(schema.items()):
            if table in self._entries:
                continue
            identifying = sorted(c for c in table_columns if IDENTIFYING_COLUMN_PATTERN.match(c))
            if identifying:
                report.unclassified_tables[table] = identifying

        for entity, entry in self._entries.items():
            if entity not in schema:
                report.missing_entities.append(entity)
                continue
            missing = [c for c in entry.columns if c not in schema[entity]]
            if missing:
                report.missing_columns[entity] = missing

        return report


DEFAULT_ENTRIES = (
    # Auth tables (camelCase columns)
    ClassificationEntry("session", Treatment.HARD_DELETE, ("userId",)),
    ClassificationEntry("account", Treatment.HARD_DELETE, ("userId",)),
    # Billing; the canceller reads stripe_subscription_id before this row goes
    ClassificationEntry("subscriptions", Treatment.HARD_DELETE, email_columns=("user_email",)),
    # Profile and app content
    ClassificationEntry("user_profiles", Treatment.HARD_DELETE),
    ClassificationEntry("user_sessions", Treatment.HARD_DELETE),
    ClassificationEntry("user_streaks", Treatment.HARD_DELETE),
    ClassificationEntry("user_notes", Treatment.HARD_DELETE),
    ClassificationEntry("push_subscriptions", Treatment.HARD_DELETE, email_columns=("user_email",)),
    ClassificationEntry("tarot_readings", Treatment.HARD_DELETE),
    ClassificationEntry("journal_patterns", Treatment.HARD_DELETE),
    ClassificationEntry("collections", Treatment.HARD_DELETE),
    ClassificationEntry("ai_threads", Treatment.HARD_DELETE),
    ClassificationEntry("ai_usage", Treatment.HARD_DELETE),
    ClassificationEntry("daily_thread_modules", Treatment.HARD_DELETE),
    ClassificationEntry("tour_progress", Treatment.HARD_DELETE),
    ClassificationEntry("shop_purchases", Treatment.HARD_DELETE),
    ClassificationEntry("api_keys", Treatment.HARD_DELETE),
    ClassificationEntry("jazz_migration_status", Treatment.HARD_DELETE),
    ClassificationEntry(
        "legacy_fallback_usage", Treatment.HARD_DELETE, email_columns=("user_email",)
    ),
    # Per-user send logs, unique on (user_id, email_type); nothing to aggregate
    ClassificationEntry("email_events", Treatment.HARD_DELETE),
    ClassificationEntry("testimonial_feedback_events", Treatment.HARD_DELETE),
    # Bidirectional relations
    ClassificationEntry("friend_connections", Treatment.HARD_DELETE, ("user_id", "friend_id")),
    ClassificationEntry("friend_requests", Treatment.HARD_DELETE, ("sender_id", "receiver_id")),
    # Analytics keep their rows, lose the link to the person
    ClassificationEntry(
        "conversion_events", Treatment.ANONYMIZE, ("user_id",), email_columns=("user_email",)
    ),
    ClassificationEntry("analytics_user_activity", Treatment.ANONYMIZE, distinct_owners=True),
    ClassificationEntry("ritual_message_events", Treatment.ANONYMIZE),
    ClassificationEntry("referrals", Treatment.ANONYMIZE, ("referrer_id", "referred_id")),
    # Legal retention
    ClassificationEntry("consent_log", Treatment.PRESERVE),
    ClassificationEntry("deletion_requests", Treatment.PRESERVE),
    # Root row, deleted last; its email column feeds the email_columns above
    ClassificationEntry(
        "user", Treatment.HARD_DELETE, ("id",), is_root=True, email_columns=("email",)
    ),
)

classification_registry = ClassificationRegistry(DEFAULT_ENTRIES)


async def verify_registry_against_database(
    registry: ClassificationRegistry | None = None,
    *,
    strict: bool | None = None,
) -> RegistryValidationReport:
    """
    Check the registry against information_schema at startup.

    Strict mode raises RegistryValidationError on any finding (fail closed);
    lenient mode logs each finding as a warning.
    """
    registry = registry or classification_registry
    config = settings.get_deletion_config()
    strict = config["registry_strict"] if strict is None else strict

    rows = await fetch_all(
        """
        SELECT table_name, column_name
        FROM information_schema.columns
        WHERE table_schema = %s
        """,
        (config["registry_schema"],),
    )
    report = registry.validate_against_schema((row["table_name"], row["column_name"]) for row in rows)

    if report.ok:
        logger.info(
            "Classification registry matches schema",
            registry_version=registry.version,
            entities=len(registry),
        )
        return report

    if strict:
        logger.error(
            "Classification registry does not match schema",
            registry_version=registry.version,
            summary=report.summary(),
        )
        raise RegistryValidationError(report.summary(), report=report)

    for table, columns in report.unclassified_tables.items():
        logger.warning("Unclassified table with identifying columns", table=table, columns=columns)
    for entity in report.missing_entities:
        logger.warning("Classified entity not found in schema", entity=entity)
    for entity, columns in report.missing_columns.items():
        logger.warning("Classified columns not found in schema", entity=entity, columns=columns)

    return report
