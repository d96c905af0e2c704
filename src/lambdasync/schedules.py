"""EventBridge schedule rules for timer-triggered functions.

Each declared timer function gets one rule and one target. Both are read
back first and only written when missing or different. Rules of functions
that are no longer declared are left in place.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import ConfigurationError
from .models import DeclaredFunction, TimerTrigger
from .provenance import ChangeLog, ChangeType
from .provider import RULE, NotFoundError, ProviderError, ResourceProvider
from .scope import Scope

logger = logging.getLogger(__name__)


class ScheduleError(ConfigurationError):
    """Raised for a schedule that cannot be expressed as an EventBridge cron."""


def schedule_expression(schedule: str) -> str:
    """Translate a 5-field cron schedule into an EventBridge cron expression.

    EventBridge needs a year field and does not allow both day-of-month and
    day-of-week to be specified, so a wildcard day-of-week becomes ``?``.
    """
    fields = schedule.split()
    if len(fields) != 5:
        raise ScheduleError(f"Invalid cron expression: {schedule}")
    minute, hour, day_of_month, month, day_of_week = fields
    if day_of_week == "*":
        day_of_week = "?"
    return f"cron({minute} {hour} {day_of_month} {month} {day_of_week} *)"


class ScheduleReconciler:
    """Ensures one enabled rule and one target per declared timer function."""

    def __init__(
        self,
        provider: ResourceProvider,
        scope: Scope,
        changes: ChangeLog,
        region: str,
        account: str,
    ) -> None:
        self._provider = provider
        self._scope = scope
        self._changes = changes
        self._region = region
        self._account = account

    async def sync(self, declared: list[DeclaredFunction]) -> None:
        # Validate every schedule before writing any rule
        expressions: dict[str, str] = {}
        for fn in declared:
            if isinstance(fn.trigger, TimerTrigger):
                expressions[fn.name] = schedule_expression(fn.trigger.schedule)
        await asyncio.gather(
            *(self._sync_schedule(name, expression) for name, expression in expressions.items())
        )

    async def _sync_schedule(self, name: str, expression: str) -> None:
        full_name = self._scope.rule_name(name)
        rule = await self._describe_rule(full_name)
        if rule is None or (rule.get("ScheduleExpression"), rule.get("State")) != (
            expression,
            "ENABLED",
        ):
            await self._put_rule(name, full_name, expression, exists=rule is not None)

        target = {
            "Id": full_name,
            "Arn": self._scope.function_arn(self._region, self._account, name),
        }
        targets = await self._list_targets(full_name)
        if not any((t.get("Id"), t.get("Arn")) == (target["Id"], target["Arn"]) for t in targets):
            await self._put_target(name, full_name, target)

    async def _describe_rule(self, full_name: str) -> dict[str, Any] | None:
        try:
            return await self._provider.call(
                "events", "describe_rule", "Error getting event bridge schedule.", Name=full_name
            )
        except NotFoundError:
            return None

    async def _list_targets(self, full_name: str) -> list[dict[str, Any]]:
        try:
            response = await self._provider.call(
                "events",
                "list_targets_by_rule",
                "Error getting event bridge targets.",
                Rule=full_name,
            )
        except NotFoundError:
            return []
        return list(response.get("Targets", []))

    async def _put_rule(self, name: str, full_name: str, expression: str, exists: bool) -> None:
        response = await self._changes.apply(
            ChangeType.UPDATE if exists else ChangeType.CREATE,
            "schedule",
            name,
            self._provider.create_resource(
                RULE,
                "Error creating event bridge schedule.",
                Name=full_name,
                ScheduleExpression=expression,
                State="ENABLED",
                Tags=self._scope.tag_list(),
            ),
            detail=expression,
        )
        if not response.get("RuleArn"):
            raise ProviderError(f"Unexpected schedule rule response for {full_name}")

    async def _put_target(self, name: str, full_name: str, target: dict[str, str]) -> None:
        response = await self._changes.apply(
            ChangeType.CREATE,
            "schedule target",
            name,
            self._provider.call(
                "events",
                "put_targets",
                "Error creating event bridge target.",
                Rule=full_name,
                Targets=[target],
            ),
        )
        if response.get("FailedEntryCount", 0) != 0:
            raise ProviderError(
                f"Failed to attach schedule target for {full_name}",
                detail=str(response.get("FailedEntries")),
            )
