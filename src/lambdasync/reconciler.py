"""Sync orchestrator.

One sync brings a scope's AWS resources in line with a declared set of
functions. Resource kinds are reconciled in dependency order, because later
kinds need identifiers produced by earlier ones:

1. execution role (its ARN is needed to create functions)
2. functions (their ARNs give the region and account)
3. the role's inline policy
4. permissions and the HTTP API, ordered by whether the API already existed
5. topics, subscriptions and schedules

The first fatal error aborts the remaining steps. Nothing is rolled back;
the next sync converges from whatever was left behind.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .compute import ComputeReconciler
from .config import ConfigurationError
from .gateway import GatewayReconciler
from .log_link import log_query_link
from .models import CurrentState, DeclaredFunction, ServiceSettings, TriggerKind
from .packaging import PackagedArtifact
from .provenance import ChangeLog, ChangeRecord, SyncProvenance, log_provenance
from .provider import ResourceProvider
from .roles import RoleReconciler
from .schedules import ScheduleReconciler
from .scope import Scope
from .topics import TopicReconciler
from .triggers import TriggerReconciler

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync."""

    log_link: str
    host: str | None = None
    revision: str | None = None
    changes: list[ChangeRecord] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


def gateway_host(api_id: str, region: str) -> str:
    return f"https://{api_id}.execute-api.{region}.amazonaws.com/"


class Reconciler:
    """Runs the reconcilers for one scope in dependency order."""

    def __init__(self, provider: ResourceProvider, scope: Scope) -> None:
        self._provider = provider
        self._scope = scope

    async def sync(
        self,
        current: CurrentState,
        declared: list[DeclaredFunction],
        settings: ServiceSettings,
        environment: dict[str, str],
        artifacts: dict[str, PackagedArtifact],
        revision: str | None = None,
    ) -> SyncResult:
        """Reconcile every resource kind against ``declared``.

        Args:
            current: Live state read at the start of this sync.
            declared: Functions to deploy, in declaration order.
            settings: Glue settings of the service.
            environment: Resolved environment variables for every function.
            artifacts: Packaged code per function name.
            revision: Revision marker of the deployed code, if known.

        Raises:
            ConfigurationError: If the declared set cannot be deployed as is.
            ProviderError: If an AWS call fails.
        """
        start_time = datetime.now(UTC)
        started = time.monotonic()
        changes = ChangeLog()
        provenance = SyncProvenance(
            environment=self._scope.environment,
            service=self._scope.service,
            revision=revision,
        )
        try:
            result = await self._sync(
                current, declared, settings, environment, artifacts, revision, changes, provenance
            )
            result.start_time = start_time
            return result
        except Exception as e:
            provenance.error = str(e)
            provenance.error_type = type(e).__name__
            raise
        finally:
            provenance.record_changes(changes)
            provenance.duration_seconds = time.monotonic() - started
            log_provenance(provenance)

    async def _sync(
        self,
        current: CurrentState,
        declared: list[DeclaredFunction],
        settings: ServiceSettings,
        environment: dict[str, str],
        artifacts: dict[str, PackagedArtifact],
        revision: str | None,
        changes: ChangeLog,
        provenance: SyncProvenance,
    ) -> SyncResult:
        provider, scope = self._provider, self._scope

        roles = RoleReconciler(provider, scope, changes)
        role_arn = await roles.sync(current.role)

        functions = await ComputeReconciler(provider, scope, changes, revision).sync(
            declared, current.functions, environment, role_arn, artifacts
        )
        if not functions:
            raise ConfigurationError(
                "Cannot determine region and account without any deployed function"
            )
        region, account = functions[0].region, functions[0].account
        provenance.region = region
        provenance.account = account

        await roles.assign_policy(
            region, account, settings.publish_topics, settings.policy_statements
        )

        triggers = TriggerReconciler(provider, scope, changes, region, account)
        gateway = GatewayReconciler(provider, scope, changes, region, account)
        existing_api_id = current.gateway.api.api_id if current.gateway.api else None
        if existing_api_id:
            # Permissions for the known API must be in place before routes change
            await triggers.sync(declared, functions, existing_api_id)
            api_id = await gateway.sync(declared, current.gateway, settings.cors_sites)
        else:
            api_id = await gateway.sync(declared, current.gateway, settings.cors_sites)
            await triggers.sync(declared, functions, api_id)

        await asyncio.gather(
            TopicReconciler(provider, scope, changes, region, account).sync(declared, functions),
            ScheduleReconciler(provider, scope, changes, region, account).sync(declared),
        )

        summary = changes.summary()
        logger.info(
            f"Synced {scope.api_name}",
            extra={
                "environment": scope.environment,
                "service": scope.service,
                "created": summary.create_count,
                "updated": summary.update_count,
                "deleted": summary.delete_count,
            },
        )
        return SyncResult(
            log_link=log_query_link(
                region,
                scope.environment,
                scope.service,
                [fn.name for fn in _log_order(declared)],
                revision,
            ),
            host=gateway_host(api_id, region) if api_id else None,
            revision=revision,
            changes=changes.records,
            end_time=datetime.now(UTC),
        )


def _log_order(declared: list[DeclaredFunction]) -> list[DeclaredFunction]:
    # Log groups are listed http first, then timers, then events
    order = {TriggerKind.HTTP: 0, TriggerKind.TIMER: 1, TriggerKind.EVENT: 2}
    return sorted(declared, key=lambda fn: order[fn.trigger.kind])
