"""Lookups of other services deployed in the same environment."""

from __future__ import annotations

import logging

from .config import ConfigurationError
from .models import BaseUrlReference, EnvValue
from .provider import ResourceProvider
from .state import get_apis

logger = logging.getLogger(__name__)


class Resolver:
    """Resolves cross-service references, caching API endpoints per environment.

    The cache lives as long as the resolver, which is one deploy.
    """

    def __init__(self, provider: ResourceProvider) -> None:
        self._provider = provider
        self._endpoints: dict[str, dict[str, str]] = {}

    async def _service_endpoints(self, environment: str) -> dict[str, str]:
        if environment not in self._endpoints:
            apis = await get_apis(self._provider, environment)
            self._endpoints[environment] = {api.name: f"{api.endpoint}/" for api in apis}
        return self._endpoints[environment]

    async def get_base_url(self, environment: str, service: str) -> str | None:
        """Public base URL of ``service``'s HTTP API, or None when it has none."""
        endpoints = await self._service_endpoints(environment)
        return endpoints.get(f"{environment}-{service}")

    async def resolve_environment(
        self, env: dict[str, EnvValue], environment: str
    ) -> dict[str, str]:
        """Resolve glue environment values into plain strings.

        Raises:
            ConfigurationError: If any referenced service has no HTTP API.
        """
        resolved: dict[str, str] = {}
        unresolved: list[str] = []
        for key, value in env.items():
            if not isinstance(value, BaseUrlReference):
                resolved[key] = value
                continue
            url = await self.get_base_url(environment, value.base_url)
            if url is None:
                logger.warning(
                    f"Could not resolve base URL of {value.base_url} for {key}",
                    extra={"environment": environment, "service": value.base_url},
                )
                unresolved.append(key)
                continue
            resolved[key] = url
        if unresolved:
            raise ConfigurationError(
                f"Unresolved environment references: {', '.join(sorted(unresolved))}"
            )
        return resolved
