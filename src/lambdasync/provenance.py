"""Change tracking and provenance records for sync runs.

Every mutating AWS call made by a reconciler goes through ChangeLog.apply,
which logs the change before and after the call and counts it. At the end
of a run the orchestrator stamps a SyncProvenance record with the counts
and logs it as the audit entry for the run.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from importlib.metadata import PackageNotFoundError, version
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

try:
    TOOL_VERSION = version("lambdasync")
except PackageNotFoundError:
    TOOL_VERSION = "dev"


class ChangeType(str, Enum):
    """Kinds of mutation a reconciler performs."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def progressive(self) -> str:
        return {"create": "creating", "update": "updating", "delete": "deleting"}[self.value]

    @property
    def past(self) -> str:
        return {"create": "created", "update": "updated", "delete": "deleted"}[self.value]


@dataclass(frozen=True)
class ChangeRecord:
    change_type: ChangeType
    kind: str
    name: str


@dataclass
class ChangeSummary:
    """Summary of changes for provenance tracking."""

    create_count: int = 0
    update_count: int = 0
    delete_count: int = 0

    @property
    def total(self) -> int:
        return self.create_count + self.update_count + self.delete_count


class ChangeLog:
    """Records the mutations applied during one sync run."""

    def __init__(self) -> None:
        self._records: list[ChangeRecord] = []

    @property
    def records(self) -> list[ChangeRecord]:
        return list(self._records)

    def summary(self) -> ChangeSummary:
        summary = ChangeSummary()
        for record in self._records:
            match record.change_type:
                case ChangeType.CREATE:
                    summary.create_count += 1
                case ChangeType.UPDATE:
                    summary.update_count += 1
                case ChangeType.DELETE:
                    summary.delete_count += 1
        return summary

    def by_kind(self, kind: str, change_type: ChangeType | None = None) -> list[str]:
        """Names of resources of ``kind`` changed in this run."""
        return [
            r.name
            for r in self._records
            if r.kind == kind and (change_type is None or r.change_type == change_type)
        ]

    async def apply(
        self,
        change_type: ChangeType,
        kind: str,
        name: str,
        operation: Awaitable[T],
        detail: str | None = None,
    ) -> T:
        """Await ``operation``, logging the change around it and recording it on success."""
        suffix = f" ({detail})" if detail else ""
        logger.info(
            f"{change_type.progressive} {kind} {name}{suffix}",
            extra={"change_type": change_type.value, "kind": kind, "resource": name},
        )
        result = await operation
        self._records.append(ChangeRecord(change_type=change_type, kind=kind, name=name))
        logger.debug(
            f"  {change_type.past} {kind} {name}",
            extra={"change_type": change_type.value, "kind": kind, "resource": name},
        )
        return result


@dataclass
class SyncProvenance:
    """Audit record for one sync run."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    tool_version: str = TOOL_VERSION

    environment: str = ""
    service: str = ""
    revision: str | None = None
    region: str | None = None
    account: str | None = None

    change_summary: ChangeSummary = field(default_factory=ChangeSummary)
    changed_kinds: dict[str, int] = field(default_factory=dict)

    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    def record_changes(self, changes: ChangeLog) -> None:
        self.change_summary = changes.summary()
        kinds: dict[str, int] = {}
        for record in changes.records:
            kinds[record.kind] = kinds.get(record.kind, 0) + 1
        self.changed_kinds = kinds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


def log_provenance(provenance: SyncProvenance) -> None:
    """Log a completed provenance record, at ERROR level when the run failed."""
    log_level = logging.ERROR if provenance.error else logging.INFO
    logger.log(
        log_level,
        "Sync provenance",
        extra={
            "provenance": provenance.to_dict(),
            "environment": provenance.environment,
            "service": provenance.service,
            "revision": provenance.revision,
            "changes_applied": provenance.change_summary.total,
            "duration_seconds": provenance.duration_seconds,
        },
    )
