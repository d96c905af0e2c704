"""Invoke permissions for the sources that trigger each function.

Every declared function carries exactly one resource-policy statement
allowing its trigger source (the HTTP API, its schedule rule or its topic)
to invoke it. Statements are compared without their Sid; one exact match is
kept, every other statement on the function is removed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from .config import ConfigurationError
from .gateway import placeholder_path
from .models import (
    DeclaredFunction,
    EventTrigger,
    FunctionPolicy,
    FunctionRef,
    HttpTrigger,
    TimerTrigger,
    Trigger,
)
from .provenance import ChangeLog, ChangeType
from .provider import PERMISSION, NotFoundError, ResourceProvider
from .scope import Scope

logger = logging.getLogger(__name__)

INVOKE_ACTION = "lambda:InvokeFunction"


@dataclass(frozen=True)
class TriggerSource:
    """Where invocations of a function come from."""

    principal: str
    source_arn: str


def trigger_source(
    trigger: Trigger,
    scope: Scope,
    function_name: str,
    region: str,
    account: str,
    api_id: str | None,
) -> TriggerSource:
    """Derive the invoking principal and source ARN for a trigger."""
    match trigger:
        case HttpTrigger(path_pattern=path_pattern):
            if not api_id:
                raise ConfigurationError(
                    f"Need API Gateway for HTTP triggers (function {function_name})"
                )
            return TriggerSource(
                principal="apigateway.amazonaws.com",
                source_arn=(
                    f"arn:aws:execute-api:{region}:{account}:{api_id}/*/*/"
                    f"{placeholder_path(path_pattern)}"
                ),
            )
        case TimerTrigger():
            return TriggerSource(
                principal="events.amazonaws.com",
                source_arn=(
                    f"arn:aws:events:{region}:{account}:rule/{scope.rule_name(function_name)}"
                ),
            )
        case EventTrigger(topic=topic, type=event_type):
            return TriggerSource(
                principal="sns.amazonaws.com",
                source_arn=f"arn:aws:sns:{region}:{account}:{scope.topic_name(topic, event_type)}",
            )
    raise TypeError(f"Unknown trigger {trigger!r}")


def expected_statement(function_arn: str, source: TriggerSource) -> dict[str, Any]:
    """The policy statement, without Sid, that lets ``source`` invoke the function."""
    return {
        "Action": INVOKE_ACTION,
        "Effect": "Allow",
        "Principal": {"Service": source.principal},
        "Resource": function_arn,
        "Condition": {"ArnLike": {"AWS:SourceArn": source.source_arn}},
    }


def statement_without_sid(statement: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in statement.items() if k != "Sid"}


class TriggerReconciler:
    """Keeps exactly one matching invoke permission on every applied function."""

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

    async def sync(
        self,
        declared: list[DeclaredFunction],
        functions: list[FunctionRef],
        api_id: str | None,
    ) -> None:
        """Reconcile permissions of the declared functions among ``functions``.

        Raises:
            ConfigurationError: If an HTTP function is declared without a gateway.
        """
        by_name = {fn.name: fn for fn in functions}
        targets = [(fn, by_name[fn.name]) for fn in declared if fn.name in by_name]
        # Fail before touching anything when a trigger source cannot be derived
        sources = {
            fn.name: trigger_source(
                fn.trigger, self._scope, fn.name, self._region, self._account, api_id
            )
            for fn, _ in targets
        }
        policies = await asyncio.gather(*(self.get_policy(ref) for _, ref in targets))
        await asyncio.gather(
            *(
                self._sync_policy(policy, expected_statement(ref.id, sources[fn.name]))
                for (fn, ref), policy in zip(targets, policies, strict=True)
            )
        )

    async def get_policy(self, ref: FunctionRef) -> FunctionPolicy:
        """Read the resource policy of a function; no policy means no statements."""
        try:
            response = await self._provider.call(
                "lambda",
                "get_policy",
                "Error getting triggers.",
                FunctionName=self._scope.function_name(ref.name),
            )
        except NotFoundError:
            return FunctionPolicy(id=ref.id, name=ref.name)
        document = json.loads(response.get("Policy") or "{}")
        statements = document.get("Statement", [])
        if isinstance(statements, dict):
            statements = [statements]
        return FunctionPolicy(id=ref.id, name=ref.name, statements=statements)

    async def _sync_policy(self, policy: FunctionPolicy, statement: dict[str, Any]) -> None:
        exists = False
        for current in policy.statements:
            if not exists and statement_without_sid(current) == statement:
                exists = True
                continue
            await self._remove(policy.name, current["Sid"])
        if not exists:
            await self._add(policy.name, statement)

    async def _add(self, name: str, statement: dict[str, Any]) -> None:
        statement_id = str(uuid.uuid4())
        source_arn = statement["Condition"]["ArnLike"]["AWS:SourceArn"]
        await self._changes.apply(
            ChangeType.CREATE,
            "trigger",
            name,
            self._provider.create_resource(
                PERMISSION,
                "Error adding triggers.",
                FunctionName=self._scope.function_name(name),
                StatementId=statement_id,
                Action=statement["Action"],
                Principal=statement["Principal"]["Service"],
                SourceArn=source_arn,
            ),
            detail=f"{statement_id} from {source_arn}",
        )

    async def _remove(self, name: str, statement_id: str) -> None:
        await self._changes.apply(
            ChangeType.DELETE,
            "trigger",
            name,
            self._provider.delete_resource(
                PERMISSION,
                statement_id,
                "Error deleting triggers.",
                FunctionName=self._scope.function_name(name),
            ),
            detail=statement_id,
        )
