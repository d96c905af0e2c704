"""AWS provider client.

Every AWS call goes through ResourceProvider.call, which runs the blocking
boto3 call in the default executor with a timeout and turns
botocore ClientErrors into a small error taxonomy:

- NotFoundError: expected absence, handled by the caller
- ConflictError: concurrent modification, retried by retry_conflict
- ThrottledError: rate limited, retried here with the provider's hint
- ProviderError: anything else, fatal, carries an operator-facing message

botocore's own retry handler is disabled so that this module owns the
retry policy and its bounds.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from .config import IAM_REGION, Config

logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLE_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
    }
)
NOT_FOUND_ERROR_CODES = frozenset(
    {
        "ResourceNotFoundException",
        "NotFoundException",
        "NoSuchEntity",
        "NotFound",
    }
)
CONFLICT_ERROR_CODES = frozenset(
    {
        "ResourceConflictException",
        "ConflictException",
        "ConcurrentModificationException",
    }
)


class ProviderError(Exception):
    """An AWS call failed.

    Attributes:
        message: Operator-facing description of what was attempted.
        status_code: HTTP status of the failed call, if there was a response.
        code: AWS error code, if there was a response.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.code = code
        self.detail = detail
        parts = [message]
        if status_code is not None:
            parts.append(f"(HTTP {status_code}{f' {code}' if code else ''})")
        if detail:
            parts.append(detail)
        super().__init__(" ".join(parts))


class NotFoundError(ProviderError):
    """The resource does not exist."""


class ConflictError(ProviderError):
    """The resource is being modified concurrently."""


class ThrottledError(ProviderError):
    """The call was rate limited more often than the retry budget allows."""


def classify_error(e: ClientError, message: str) -> ProviderError:
    """Map a botocore ClientError onto the provider error taxonomy."""
    error = e.response.get("Error", {})
    code = error.get("Code")
    detail = error.get("Message")
    status_code = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if status_code == 429 or code in THROTTLE_ERROR_CODES:
        cls: type[ProviderError] = ThrottledError
    elif status_code == 404 or code in NOT_FOUND_ERROR_CODES:
        cls = NotFoundError
    elif status_code == 409 or code in CONFLICT_ERROR_CODES:
        cls = ConflictError
    else:
        cls = ProviderError
    return cls(message, status_code=status_code, code=code, detail=detail)


def retry_after_hint(e: ClientError) -> str | None:
    headers = e.response.get("ResponseMetadata", {}).get("HTTPHeaders", {})
    value = headers.get("retry-after")
    return str(value) if value is not None else None


def retry_delay(hint: str | None, default: float, jitter: float) -> float:
    """Seconds to wait before retrying a throttled call.

    ``hint`` is a Retry-After value, either delta-seconds or an HTTP date.
    Unparseable or absent hints fall back to ``default``. Uniform random
    jitter in [0, jitter] is always added.
    """
    extra = random.uniform(0, jitter)
    if not hint:
        return default + extra
    try:
        return max(0.0, float(hint)) + extra
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(hint)
    except (TypeError, ValueError):
        return default + extra
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds()) + extra


@dataclass(frozen=True)
class ResourceKind:
    """How one kind of AWS resource is listed, created, updated and deleted.

    An operation of None means this system never performs it for the kind.
    """

    name: str
    service: str
    id_param: str
    list_operation: str | None = None
    items_key: str | None = None
    token_param: str | None = None
    token_key: str | None = None
    name_key: str | None = None
    create_operation: str | None = None
    update_operation: str | None = None
    delete_operation: str | None = None


FUNCTION = ResourceKind(
    name="function",
    service="lambda",
    id_param="FunctionName",
    list_operation="list_functions",
    items_key="Functions",
    token_param="Marker",
    token_key="NextMarker",
    name_key="FunctionName",
    create_operation="create_function",
    update_operation="update_function_configuration",
    delete_operation="delete_function",
)
PERMISSION = ResourceKind(
    name="permission",
    service="lambda",
    id_param="StatementId",
    create_operation="add_permission",
    delete_operation="remove_permission",
)
API = ResourceKind(
    name="api",
    service="apigatewayv2",
    id_param="ApiId",
    list_operation="get_apis",
    items_key="Items",
    token_param="NextToken",
    token_key="NextToken",
    name_key="Name",
    create_operation="create_api",
    update_operation="update_api",
)
STAGE = ResourceKind(
    name="stage",
    service="apigatewayv2",
    id_param="StageName",
    create_operation="create_stage",
)
INTEGRATION = ResourceKind(
    name="integration",
    service="apigatewayv2",
    id_param="IntegrationId",
    list_operation="get_integrations",
    items_key="Items",
    token_param="NextToken",
    token_key="NextToken",
    create_operation="create_integration",
    update_operation="update_integration",
    delete_operation="delete_integration",
)
ROUTE = ResourceKind(
    name="route",
    service="apigatewayv2",
    id_param="RouteId",
    list_operation="get_routes",
    items_key="Items",
    token_param="NextToken",
    token_key="NextToken",
    create_operation="create_route",
    update_operation="update_route",
    delete_operation="delete_route",
)
RULE = ResourceKind(
    name="rule",
    service="events",
    id_param="Name",
    create_operation="put_rule",
)
TOPIC = ResourceKind(
    name="topic",
    service="sns",
    id_param="TopicArn",
    create_operation="create_topic",
)
SUBSCRIPTION = ResourceKind(
    name="subscription",
    service="sns",
    id_param="SubscriptionArn",
    list_operation="list_subscriptions_by_topic",
    items_key="Subscriptions",
    token_param="NextToken",
    token_key="NextToken",
    create_operation="subscribe",
)
# The execution role is created at most once and never deleted
ROLE = ResourceKind(
    name="role",
    service="iam",
    id_param="RoleName",
    create_operation="create_role",
)


class ResourceProvider:
    """Async facade over a boto3 session.

    Clients are created lazily, one per service, and reused. IAM clients
    always target the global endpoint region.
    """

    def __init__(self, session: boto3.Session, config: Config) -> None:
        self._session = session
        self._config = config
        self._clients: dict[str, Any] = {}

    @property
    def region(self) -> str | None:
        return self._session.region_name

    @property
    def config(self) -> Config:
        return self._config

    def client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self._session.client(
                service,
                region_name=IAM_REGION if service == "iam" else self._session.region_name,
                config=BotoConfig(retries={"max_attempts": 1, "mode": "standard"}),
            )
        return self._clients[service]

    async def call(
        self,
        service: str,
        operation: str,
        error_message: str,
        **params: Any,
    ) -> dict[str, Any]:
        """Issue one AWS call, retrying only while throttled.

        Raises:
            NotFoundError, ConflictError, ThrottledError, ProviderError:
                Classified failure of the call.
            TimeoutError: If the call exceeds the configured timeout.
        """
        method = getattr(self.client(service), operation)
        loop = asyncio.get_running_loop()
        retries = 0
        while True:
            try:
                result = await asyncio.wait_for(
                    loop.run_in_executor(None, functools.partial(method, **params)),
                    timeout=self._config.call_timeout_seconds,
                )
                return result or {}
            except ClientError as e:
                error = classify_error(e, error_message)
                budget = self._config.max_throttle_retries
                if isinstance(error, ThrottledError) and retries < budget:
                    retries += 1
                    hint = retry_after_hint(e)
                    delay = retry_delay(
                        hint,
                        self._config.throttle_delay_seconds,
                        self._config.throttle_jitter_seconds,
                    )
                    logger.debug(
                        f"  retrying #{retries}{f' (after {hint})' if hint else ''}...",
                        extra={"service": service, "operation": operation, "delay": delay},
                    )
                    await asyncio.sleep(delay)
                    continue
                raise error from e
            except TimeoutError:
                logger.error(
                    f"{service}.{operation} timed out",
                    extra={"timeout_seconds": self._config.call_timeout_seconds},
                )
                raise

    async def retry_conflict(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Retry ``fn`` on ConflictError until the conflict deadline passes."""
        deadline = time.monotonic() + self._config.conflict_deadline_seconds
        while True:
            try:
                return await fn()
            except ConflictError as e:
                if time.monotonic() > deadline:
                    raise
                delay = (random.random() + 0.5) * self._config.conflict_delay_seconds
                logger.debug("  conflict, retrying...", extra={"error": str(e), "delay": delay})
                await asyncio.sleep(delay)

    async def retry(
        self,
        fn: Callable[[], Awaitable[T]],
        when: Callable[[ProviderError], bool],
        max_retries: int,
        delay_seconds: float,
    ) -> T:
        """Retry ``fn`` up to ``max_retries`` times while ``when`` holds for its error."""
        retries = 0
        while True:
            try:
                return await fn()
            except ProviderError as e:
                if retries >= max_retries or not when(e):
                    raise
                retries += 1
                logger.debug(f"  retrying #{retries}... ({e})")
                await asyncio.sleep(delay_seconds)

    async def paginate(
        self,
        kind: ResourceKind,
        error_message: str,
        **params: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every listed item of ``kind``, following continuation tokens."""
        if kind.list_operation is None or kind.items_key is None:
            raise ValueError(f"Resources of kind {kind.name} cannot be listed")
        token: str | None = None
        while True:
            page_params = dict(params)
            if token is not None and kind.token_param is not None:
                page_params[kind.token_param] = token
            page = await self.call(kind.service, kind.list_operation, error_message, **page_params)
            for item in page.get(kind.items_key, []):
                yield item
            token = page.get(kind.token_key) if kind.token_key else None
            if not token:
                return

    async def list_resources(
        self,
        kind: ResourceKind,
        name_filter: str | None = None,
        **scope: Any,
    ) -> list[dict[str, Any]]:
        """List resources of ``kind``, keeping names starting with ``name_filter``."""
        items = []
        async for item in self.paginate(kind, f"Error listing {kind.name}s.", **scope):
            if name_filter is not None and kind.name_key is not None:
                if not str(item.get(kind.name_key, "")).lower().startswith(name_filter.lower()):
                    continue
            items.append(item)
        return items

    async def create_resource(
        self, kind: ResourceKind, error_message: str, **params: Any
    ) -> dict[str, Any]:
        if kind.create_operation is None:
            raise ValueError(f"Resources of kind {kind.name} cannot be created")
        return await self.call(kind.service, kind.create_operation, error_message, **params)

    async def update_resource(
        self, kind: ResourceKind, resource_id: str, error_message: str, **params: Any
    ) -> dict[str, Any]:
        if kind.update_operation is None:
            raise ValueError(f"Resources of kind {kind.name} cannot be updated")
        return await self.call(
            kind.service,
            kind.update_operation,
            error_message,
            **{kind.id_param: resource_id},
            **params,
        )

    async def delete_resource(
        self, kind: ResourceKind, resource_id: str, error_message: str, **scope: Any
    ) -> None:
        if kind.delete_operation is None:
            raise ValueError(f"Resources of kind {kind.name} cannot be deleted")
        await self.call(
            kind.service,
            kind.delete_operation,
            error_message,
            **{kind.id_param: resource_id},
            **scope,
        )
