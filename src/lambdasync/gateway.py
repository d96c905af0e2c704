"""HTTP API (API Gateway v2) reconciliation.

Each HTTP-triggered function gets one AWS_PROXY integration and one route
on the scope's HTTP API. Routes are matched to functions through the
integration they target, so a route whose integration is gone or unknown
is treated as surplus.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .diff import compare
from .models import (
    DeclaredFunction,
    Gateway,
    GatewayApi,
    HttpTrigger,
    Integration,
    Route,
)
from .provenance import ChangeLog, ChangeType
from .provider import API, INTEGRATION, ROUTE, STAGE, ResourceProvider
from .scope import Scope

logger = logging.getLogger(__name__)

DEFAULT_STAGE_NAME = "$default"
CORS_MAX_AGE_SECONDS = 600
MAX_INTEGRATION_TIMEOUT_MS = 30_000
INTEGRATION_TIMEOUT_MARGIN_SECONDS = 5
DEFAULT_FUNCTION_TIMEOUT_SECONDS = 15

# Keys compared between a declared and an observed integration or route
INTEGRATION_KEYS = (
    "PayloadFormatVersion",
    "IntegrationType",
    "IntegrationMethod",
    "IntegrationUri",
    "ConnectionType",
    "TimeoutInMillis",
)
ROUTE_KEYS = ("RouteKey", "AuthorizationType", "ApiKeyRequired", "Target")


def trim_trailing_slash(path: str) -> str:
    return path[:-1] if path.endswith("/") else path


def placeholder_path(path_pattern: str) -> str:
    """Replace each ``*`` segment with a positional placeholder ``{p1}``, ``{p2}``...

    The trailing slash is trimmed from the result.
    """
    parts = path_pattern.split("*")
    path = parts[0]
    for index, part in enumerate(parts[1:], start=1):
        path += f"{{p{index}}}{part}"
    return trim_trailing_slash(path)


def route_key(method: str, path_pattern: str) -> str:
    return f"{method} /{placeholder_path(path_pattern)}"


def cors_settings(cors_sites: list[str]) -> dict[str, Any]:
    # A wildcard origin cannot be combined with credentialed requests
    return {
        "AllowOrigins": list(cors_sites),
        "AllowCredentials": list(cors_sites) != ["*"],
        "MaxAge": CORS_MAX_AGE_SECONDS,
        "AllowMethods": ["*"],
        "AllowHeaders": ["*"],
        "ExposeHeaders": ["*"],
    }


def _http_trigger(fn: DeclaredFunction) -> HttpTrigger:
    if not isinstance(fn.trigger, HttpTrigger):
        raise TypeError(f"Function {fn.name} is not HTTP-triggered")
    return fn.trigger


def integration_definition(
    scope: Scope, region: str, account: str, fn: DeclaredFunction
) -> dict[str, Any]:
    timeout = fn.config.timeout or DEFAULT_FUNCTION_TIMEOUT_SECONDS
    return {
        "PayloadFormatVersion": "2.0",
        "IntegrationType": "AWS_PROXY",
        "IntegrationMethod": _http_trigger(fn).method,
        "IntegrationUri": scope.function_arn(region, account, fn.name),
        "ConnectionType": "INTERNET",
        "TimeoutInMillis": min(
            (timeout + INTEGRATION_TIMEOUT_MARGIN_SECONDS) * 1000, MAX_INTEGRATION_TIMEOUT_MS
        ),
    }


def route_definition(integration_id: str, fn: DeclaredFunction) -> dict[str, Any]:
    trigger = _http_trigger(fn)
    return {
        "RouteKey": route_key(trigger.method, trigger.path_pattern),
        "AuthorizationType": "NONE",
        "ApiKeyRequired": False,
        "Target": f"integrations/{integration_id}",
    }


class GatewayReconciler:
    """Brings the scope's HTTP API in line with the declared HTTP functions."""

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
        current: Gateway,
        cors_sites: list[str],
    ) -> str | None:
        """Reconcile the gateway and return its API id, or None without HTTP functions."""
        http = [fn for fn in declared if isinstance(fn.trigger, HttpTrigger)]
        if not http:
            return None
        if current.api is None:
            return await self._create_gateway(http, cors_sites)

        api_id = current.api.api_id
        await self._sync_api(current.api, cors_sites)
        if current.stage is None:
            await self._create_stage(api_id)

        integration_ids, surplus_integrations = await self._sync_integrations(
            api_id, http, current.integrations
        )
        name_by_target = {
            f"integrations/{integration_id}": name
            for name, integration_id in integration_ids.items()
        }
        routes = [
            Route(route_id=r.route_id, definition=r.definition, name=name_by_target.get(r.target))
            for r in current.routes
        ]

        diff = compare(http, routes)
        by_name = {fn.name: fn for fn in http}
        await asyncio.gather(*(self._delete_route(api_id, route) for route in diff.surplus))
        await asyncio.gather(
            *(
                self._create_route(api_id, fn, route_definition(integration_ids[fn.name], fn))
                for fn in diff.missing
            ),
            *(
                self._update_route(api_id, route, by_name[route.name], integration_ids)
                for route in diff.existing
                if route.name is not None
            ),
        )
        # Integrations can only go once no route targets them
        await asyncio.gather(
            *(self._delete_integration(api_id, i) for i in surplus_integrations)
        )
        return api_id

    async def _create_gateway(self, http: list[DeclaredFunction], cors_sites: list[str]) -> str:
        response = await self._changes.apply(
            ChangeType.CREATE,
            "gateway",
            self._scope.api_name,
            self._provider.create_resource(
                API,
                "Error creating gateway.",
                Name=self._scope.api_name,
                ProtocolType="HTTP",
                CorsConfiguration=cors_settings(cors_sites),
                Tags=self._scope.tags(),
            ),
        )
        api_id = str(response["ApiId"])
        await self._create_stage(api_id)

        created = await asyncio.gather(*(self._create_integration(api_id, fn) for fn in http))
        integration_ids = dict(created)
        await asyncio.gather(
            *(
                self._create_route(api_id, fn, route_definition(integration_ids[fn.name], fn))
                for fn in http
            )
        )
        return api_id

    async def _sync_api(self, api: GatewayApi, cors_sites: list[str]) -> None:
        cors = cors_settings(cors_sites)
        if cors == api.cors:
            return
        await self._changes.apply(
            ChangeType.UPDATE,
            "gateway",
            api.name,
            self._provider.update_resource(
                API,
                api.api_id,
                "Error updating gateway.",
                Name=self._scope.api_name,
                CorsConfiguration=cors,
            ),
        )

    async def _create_stage(self, api_id: str) -> None:
        await self._changes.apply(
            ChangeType.CREATE,
            "stage",
            DEFAULT_STAGE_NAME,
            self._provider.create_resource(
                STAGE,
                "Error creating stage.",
                ApiId=api_id,
                StageName=DEFAULT_STAGE_NAME,
                AutoDeploy=True,
                Tags=self._scope.tags(),
            ),
        )

    async def _sync_integrations(
        self,
        api_id: str,
        http: list[DeclaredFunction],
        current: list[Integration],
    ) -> tuple[dict[str, str], list[Integration]]:
        diff = compare(http, current)
        by_name = {fn.name: fn for fn in http}
        ids = await asyncio.gather(
            *(self._create_integration(api_id, fn) for fn in diff.missing),
            *(
                self._update_integration(api_id, by_name[i.name], i)
                for i in diff.existing
                if i.name is not None
            ),
        )
        return dict(ids), diff.surplus

    async def _create_integration(self, api_id: str, fn: DeclaredFunction) -> tuple[str, str]:
        definition = integration_definition(self._scope, self._region, self._account, fn)
        response = await self._changes.apply(
            ChangeType.CREATE,
            "integration",
            fn.name,
            self._provider.retry_conflict(
                lambda: self._provider.create_resource(
                    INTEGRATION,
                    "Error creating API integration.",
                    ApiId=api_id,
                    **definition,
                )
            ),
            detail=definition["IntegrationUri"],
        )
        return fn.name, str(response["IntegrationId"])

    async def _update_integration(
        self, api_id: str, fn: DeclaredFunction, integration: Integration
    ) -> tuple[str, str]:
        definition = integration_definition(self._scope, self._region, self._account, fn)
        if definition != integration.definition:
            await self._changes.apply(
                ChangeType.UPDATE,
                "integration",
                fn.name,
                self._provider.update_resource(
                    INTEGRATION,
                    integration.integration_id,
                    "Error updating API integration.",
                    ApiId=api_id,
                    **definition,
                ),
                detail=definition["IntegrationUri"],
            )
        return fn.name, integration.integration_id

    async def _delete_integration(self, api_id: str, integration: Integration) -> None:
        await self._changes.apply(
            ChangeType.DELETE,
            "integration",
            integration.name or integration.integration_id,
            self._provider.delete_resource(
                INTEGRATION,
                integration.integration_id,
                "Error deleting API integration.",
                ApiId=api_id,
            ),
        )

    async def _create_route(
        self, api_id: str, fn: DeclaredFunction, definition: dict[str, Any]
    ) -> None:
        await self._changes.apply(
            ChangeType.CREATE,
            "route",
            fn.name,
            self._provider.retry_conflict(
                lambda: self._provider.create_resource(
                    ROUTE, "Error creating API route.", ApiId=api_id, **definition
                )
            ),
            detail=f"{definition['RouteKey']} to {definition['Target']}",
        )

    async def _update_route(
        self,
        api_id: str,
        route: Route,
        fn: DeclaredFunction,
        integration_ids: dict[str, str],
    ) -> None:
        definition = route_definition(integration_ids[fn.name], fn)
        if definition == route.definition:
            return
        await self._changes.apply(
            ChangeType.UPDATE,
            "route",
            fn.name,
            self._provider.update_resource(
                ROUTE, route.route_id, "Error updating API route.", ApiId=api_id, **definition
            ),
            detail=f"{definition['RouteKey']} to {definition['Target']}",
        )

    async def _delete_route(self, api_id: str, route: Route) -> None:
        await self._changes.apply(
            ChangeType.DELETE,
            "route",
            route.name or route.definition.get("RouteKey", route.route_id),
            self._provider.delete_resource(
                ROUTE, route.route_id, "Error deleting API route.", ApiId=api_id
            ),
            detail=route.target,
        )
