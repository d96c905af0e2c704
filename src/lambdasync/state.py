"""Live snapshot of a scope's resources in AWS.

Nothing here is cached: every sync starts from a fresh read.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .gateway import DEFAULT_STAGE_NAME, INTEGRATION_KEYS, ROUTE_KEYS
from .models import (
    CurrentState,
    Gateway,
    GatewayApi,
    GatewayStage,
    Integration,
    RemoteFunction,
    Route,
)
from .packaging import describe_size
from .provider import API, FUNCTION, INTEGRATION, ROUTE, NotFoundError, ResourceProvider
from .roles import get_role
from .scope import Scope

logger = logging.getLogger(__name__)


async def _function_tags(provider: ResourceProvider, arn: str) -> dict[str, str] | None:
    try:
        response = await provider.call(
            "lambda", "list_tags", "Error listing function tags.", Resource=arn
        )
    except NotFoundError:
        return None
    return dict(response.get("Tags") or {})


async def get_functions(provider: ResourceProvider, scope: Scope) -> list[RemoteFunction]:
    """Lambda functions of the scope, in listing order, named without the prefix.

    A name prefix alone is ambiguous: service ``greeting-api`` shares the
    prefix of service ``greeting``. Prefix matches whose tags name another
    environment or service are left out, so they are never updated or
    deleted. Untagged functions are taken to be in scope.
    """
    candidates = []
    for fn in await provider.list_resources(FUNCTION, name_filter=scope.prefix):
        name = scope.short_name(fn["FunctionName"])
        if name is not None:
            candidates.append((name, fn))
    all_tags = await asyncio.gather(
        *(_function_tags(provider, fn["FunctionArn"]) for _, fn in candidates)
    )

    functions = []
    for (name, fn), tags in zip(candidates, all_tags, strict=True):
        if tags is None:
            continue
        if not scope.owns(tags):
            logger.info(
                f"Skipping function {fn['FunctionName']} of another scope",
                extra={
                    "resource": fn["FunctionName"],
                    "owner_environment": tags.get("environment"),
                    "owner_service": tags.get("service"),
                },
            )
            continue
        functions.append(
            RemoteFunction(
                id=fn["FunctionArn"],
                name=name,
                runtime=fn.get("Runtime"),
                memory=fn.get("MemorySize", 0),
                timeout=fn.get("Timeout", 0),
                env=dict((fn.get("Environment") or {}).get("Variables") or {}),
                cpus=list(fn.get("Architectures") or ["x86_64"]),
                hash=fn.get("CodeSha256", ""),
                size=describe_size(fn.get("CodeSize", 0)),
            )
        )
    return functions


async def get_apis(provider: ResourceProvider, environment: str) -> list[GatewayApi]:
    """HTTP APIs of every service in ``environment``."""
    return [
        GatewayApi(
            api_id=api["ApiId"],
            name=api["Name"],
            endpoint=api.get("ApiEndpoint", ""),
            cors=dict(api.get("CorsConfiguration") or {}),
        )
        for api in await provider.list_resources(API, name_filter=f"{environment}-")
    ]


def _pick(item: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    return {key: item.get(key) for key in keys}


async def get_integrations(
    provider: ResourceProvider, scope: Scope, api_id: str
) -> list[Integration]:
    integrations = []
    for item in await provider.list_resources(INTEGRATION, ApiId=api_id):
        # Named after the function in the last ARN segment; None outside the scope
        function_name = str(item.get("IntegrationUri", "")).split(":")[-1]
        integrations.append(
            Integration(
                integration_id=item["IntegrationId"],
                name=scope.short_name(function_name),
                definition=_pick(item, INTEGRATION_KEYS),
            )
        )
    return integrations


async def get_routes(provider: ResourceProvider, api_id: str) -> list[Route]:
    return [
        Route(route_id=item["RouteId"], definition=_pick(item, ROUTE_KEYS))
        for item in await provider.list_resources(ROUTE, ApiId=api_id)
    ]


async def get_stage(provider: ResourceProvider, api_id: str) -> GatewayStage | None:
    try:
        stage = await provider.call(
            "apigatewayv2",
            "get_stage",
            "Error getting API stage.",
            ApiId=api_id,
            StageName=DEFAULT_STAGE_NAME,
        )
    except NotFoundError:
        return None
    return GatewayStage(name=stage["StageName"])


async def get_gateway(provider: ResourceProvider, scope: Scope) -> Gateway:
    """The scope's HTTP API with its integrations, routes and default stage."""
    for api in await get_apis(provider, scope.environment):
        if api.name == scope.api_name:
            integrations, routes, stage = await asyncio.gather(
                get_integrations(provider, scope, api.api_id),
                get_routes(provider, api.api_id),
                get_stage(provider, api.api_id),
            )
            return Gateway(api=api, stage=stage, integrations=integrations, routes=routes)
    return Gateway()


async def read_current_state(provider: ResourceProvider, scope: Scope) -> CurrentState:
    """Read role, functions and gateway of ``scope`` concurrently."""
    role, functions, gateway = await asyncio.gather(
        get_role(provider, scope),
        get_functions(provider, scope),
        get_gateway(provider, scope),
    )
    logger.info(
        "Read current state",
        extra={
            "environment": scope.environment,
            "service": scope.service,
            "role_exists": role is not None,
            "functions": len(functions),
            "gateway_exists": gateway.api is not None,
        },
    )
    return CurrentState(role=role, functions=functions, gateway=gateway)
