"""Models for declared functions, glue settings and observed AWS resources.

These models provide:
1. Type-safe parsing of the reflection document and the glue file
2. Validation at the boundary (fail fast, fail loudly)
3. Plain records for what the current-state reader observes in AWS
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

FRAMEWORK_TAG = "lambdasync"

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})

# =============================================================================
# Reflection document
# =============================================================================


class FunctionConfig(BaseModel):
    """Resource requirements declared for a function."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    timeout: Annotated[int, Field(ge=1, le=900)] | None = None
    memory: str | None = None
    compute: str | None = None
    cpus: list[str] | None = None
    node_version: str | None = Field(None, alias="nodeVersion")

    def merged_over(self, defaults: FunctionConfig) -> FunctionConfig:
        """Return this config with unset fields taken from ``defaults``."""
        values = defaults.model_dump(exclude_none=True)
        values.update(self.model_dump(exclude_none=True))
        return FunctionConfig.model_validate(values)


class _FunctionSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")]
    config: FunctionConfig = Field(default_factory=FunctionConfig)
    code: str | None = None


class HttpFunctionSpec(_FunctionSpec):
    """HTTP-triggered function: one route on the service gateway."""

    method: str
    path_pattern: str = Field(alias="pathPattern")

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"method must be one of {sorted(HTTP_METHODS)}")
        return method

    @field_validator("path_pattern")
    @classmethod
    def strip_leading_slash(cls, v: str) -> str:
        return v.lstrip("/")


class TimerFunctionSpec(_FunctionSpec):
    """Timer-triggered function with a 5-field cron schedule."""

    schedule: str

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        if len(v.split()) != 5:
            raise ValueError(f"schedule must have 5 fields: {v}")
        return v


class EventFunctionSpec(_FunctionSpec):
    """Function subscribed to a (topic, event type) pair."""

    topic: Annotated[str, Field(min_length=1)]
    type: Annotated[str, Field(min_length=1)]


class Reflection(BaseModel):
    """The declared function set produced by the reflection step."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=40)]
    revision: str | None = None
    config: FunctionConfig = Field(default_factory=FunctionConfig)
    http: list[HttpFunctionSpec] = Field(default_factory=list)
    timers: list[TimerFunctionSpec] = Field(default_factory=list)
    events: list[EventFunctionSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_names(self) -> Reflection:
        seen: set[str] = set()
        duplicates: list[str] = []
        for fn in [*self.http, *self.timers, *self.events]:
            if fn.name in seen:
                duplicates.append(fn.name)
            seen.add(fn.name)
        if duplicates:
            raise ValueError(f"function names must be unique: {duplicates}")
        return self

    def functions(self) -> list[DeclaredFunction]:
        """All declared functions, HTTP first, then events, then timers."""
        declared: list[DeclaredFunction] = []
        for http in self.http:
            declared.append(
                DeclaredFunction(
                    name=http.name,
                    trigger=HttpTrigger(method=http.method, path_pattern=http.path_pattern),
                    config=http.config.merged_over(self.config),
                    code=http.code,
                )
            )
        for event in self.events:
            declared.append(
                DeclaredFunction(
                    name=event.name,
                    trigger=EventTrigger(topic=event.topic, type=event.type),
                    config=event.config.merged_over(self.config),
                    code=event.code,
                )
            )
        for timer in self.timers:
            declared.append(
                DeclaredFunction(
                    name=timer.name,
                    trigger=TimerTrigger(schedule=timer.schedule),
                    config=timer.config.merged_over(self.config),
                    code=timer.code,
                )
            )
        return declared


# =============================================================================
# Declared functions and trigger kinds
# =============================================================================


class TriggerKind(str, Enum):
    """What invokes a function."""

    HTTP = "http"
    TIMER = "timer"
    EVENT = "event"


@dataclass(frozen=True)
class HttpTrigger:
    method: str
    path_pattern: str
    kind: TriggerKind = field(default=TriggerKind.HTTP, init=False)


@dataclass(frozen=True)
class TimerTrigger:
    schedule: str
    kind: TriggerKind = field(default=TriggerKind.TIMER, init=False)


@dataclass(frozen=True)
class EventTrigger:
    topic: str
    type: str
    kind: TriggerKind = field(default=TriggerKind.EVENT, init=False)


Trigger = HttpTrigger | TimerTrigger | EventTrigger


@dataclass(frozen=True)
class DeclaredFunction:
    """One deployable function with its trigger binding."""

    name: str
    trigger: Trigger
    config: FunctionConfig = field(default_factory=FunctionConfig)
    code: str | None = None

    @property
    def method(self) -> str | None:
        """HTTP method for HTTP-triggered functions, else None."""
        if isinstance(self.trigger, HttpTrigger):
            return self.trigger.method
        return None


# =============================================================================
# Glue file
# =============================================================================


class PolicyStatement(BaseModel):
    """Additional IAM statement granted to the execution role.

    ``$REGION`` and ``$ACCOUNT`` in the resource are substituted at sync time.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    effect: str = Field("Allow", alias="Effect")
    action: list[str] = Field(alias="Action")
    resource: str = Field(alias="Resource")

    @field_validator("action", mode="before")
    @classmethod
    def coerce_action(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("effect")
    @classmethod
    def validate_effect(cls, v: str) -> str:
        if v not in ("Allow", "Deny"):
            raise ValueError("Effect must be Allow or Deny")
        return v


class AwsGlue(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    policy_statements: list[PolicyStatement] = Field(
        default_factory=list, alias="policyStatements"
    )


class BaseUrlReference(BaseModel):
    """Environment value resolved to another service's public base URL."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    base_url: Annotated[str, Field(min_length=1, alias="baseUrl")]


EnvValue = str | BaseUrlReference


class ServiceGlue(BaseModel):
    """Per-service overrides in the glue file."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    service: str | None = None
    cors_sites: list[str] | None = Field(None, alias="corsSites")
    publish_topics: list[str] | None = Field(None, alias="publishTopics")
    env: dict[str, EnvValue] = Field(default_factory=dict)
    aws: AwsGlue | None = None


class Glue(ServiceGlue):
    """Deployment settings shared by every service of an environment."""

    services: dict[str, ServiceGlue] = Field(default_factory=dict)

    def for_service(self, name: str) -> ServiceSettings:
        """Merge the top-level defaults with the overrides for ``name``."""
        override = self.services.get(name, ServiceGlue())
        env: dict[str, EnvValue] = {**self.env, **override.env}
        aws = override.aws or self.aws or AwsGlue()
        return ServiceSettings(
            service=override.service or self.service or name,
            cors_sites=_first_set(override.cors_sites, self.cors_sites),
            publish_topics=_first_set(override.publish_topics, self.publish_topics),
            env=env,
            policy_statements=list(aws.policy_statements),
        )


def _first_set(*values: list[str] | None) -> list[str]:
    for value in values:
        if value is not None:
            return list(value)
    return []


@dataclass
class ServiceSettings:
    """Effective glue settings for one service."""

    service: str
    cors_sites: list[str] = field(default_factory=list)
    publish_topics: list[str] = field(default_factory=list)
    env: dict[str, EnvValue] = field(default_factory=dict)
    policy_statements: list[PolicyStatement] = field(default_factory=list)


# =============================================================================
# Observed AWS resources
# =============================================================================


@dataclass
class RemoteFunction:
    """A Lambda function inside the scope, named without its scope prefix."""

    id: str
    name: str
    runtime: str | None
    memory: int
    timeout: int
    env: dict[str, str]
    cpus: list[str]
    hash: str
    size: str


@dataclass(frozen=True)
class FunctionRef:
    """Applied compute unit handed to downstream reconcilers."""

    name: str
    id: str

    @property
    def region(self) -> str:
        return self.id.split(":")[3]

    @property
    def account(self) -> str:
        return self.id.split(":")[4]


@dataclass
class ExecutionRole:
    arn: str
    name: str


@dataclass
class GatewayApi:
    api_id: str
    name: str
    endpoint: str
    cors: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayStage:
    name: str


@dataclass
class Integration:
    """Gateway integration; ``name`` is the function it points at."""

    integration_id: str
    name: str | None
    definition: dict[str, Any]


@dataclass
class Route:
    """Gateway route; ``name`` is resolved through its integration target."""

    route_id: str
    definition: dict[str, Any]
    name: str | None = None

    @property
    def target(self) -> str:
        return str(self.definition.get("Target", ""))


@dataclass
class Gateway:
    """Snapshot of the scope's HTTP API; ``api`` is None when absent."""

    api: GatewayApi | None = None
    stage: GatewayStage | None = None
    integrations: list[Integration] = field(default_factory=list)
    routes: list[Route] = field(default_factory=list)


@dataclass
class FunctionPolicy:
    """Resource policy statements attached to one function."""

    id: str
    name: str
    statements: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CurrentState:
    """Everything the synchronizer needs to know about a scope in AWS."""

    role: ExecutionRole | None
    functions: list[RemoteFunction]
    gateway: Gateway
