"""Lambda function reconciliation.

Runtime, memory and CPU architecture are derived from each function's
declared requirements. Existing functions are only touched when their code
or configuration actually differs from what is declared.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import ConfigurationError
from .diff import compare
from .models import DeclaredFunction, FunctionConfig, FunctionRef, RemoteFunction
from .packaging import PackagedArtifact, PackagingError
from .provenance import ChangeLog, ChangeType
from .provider import FUNCTION, ProviderError, ResourceProvider
from .scope import Scope

logger = logging.getLogger(__name__)

HANDLER = "index.handler"
DEFAULT_TIMEOUT_SECONDS = 15

HTTP_MEMORY_MB = 256
HIGH_MEMORY_MB = 3008
DEFAULT_MEMORY_MB = 128

# Engine requirement prefix to Lambda runtime, newest first
RUNTIMES: tuple[tuple[str, str], ...] = (
    (">=22", "nodejs22.x"),
    (">=20", "nodejs20.x"),
    (">=18", "nodejs18.x"),
)

X86_FIRST = ("x64", "x32", "arm64", "arm")
ARM_FIRST = ("arm64", "arm", "x64", "x32")
ARCHITECTURES = {
    "arm64": ["arm64"],
    "arm": ["arm64"],
    "x64": ["x86_64"],
    "x32": ["x86_64"],
}


def runtime_for(config: FunctionConfig) -> str:
    requirement = (config.node_version or "").replace(" ", "")
    for prefix, runtime in RUNTIMES:
        if requirement.startswith(prefix):
            return runtime
    raise ConfigurationError(
        f"Unsupported engine {config.node_version!r}; please specify "
        '"node": ">=18", "node": ">=20", or "node": ">=22" as an engine in your package.json.'
    )


def memory_size(fn: DeclaredFunction) -> int:
    config = fn.config
    if not config.compute and not config.memory and fn.method:
        return HTTP_MEMORY_MB
    if config.compute == "high" or config.memory == "high":
        return HIGH_MEMORY_MB
    return DEFAULT_MEMORY_MB


def resolve_cpu(config: FunctionConfig, preferences: tuple[str, ...]) -> str | None:
    """First preferred CPU the function allows; every CPU is allowed when unrestricted."""
    if not config.cpus:
        return preferences[0] if preferences else None
    for cpu in preferences:
        if cpu in config.cpus:
            return cpu
    return None


def architectures(fn: DeclaredFunction) -> list[str]:
    config = fn.config
    # GET handlers are latency sensitive, so they prefer x86 unless a tier is set
    x86_first = config.compute == "high" or (config.compute is None and fn.method == "GET")
    cpu = resolve_cpu(config, X86_FIRST if x86_first else ARM_FIRST)
    if cpu is None:
        raise ConfigurationError(
            f"Unsupported CPUs for function {fn.name}: {', '.join(config.cpus or [])}"
        )
    return list(ARCHITECTURES[cpu])


def function_configuration(
    fn: DeclaredFunction, role_arn: str, environment: dict[str, str]
) -> dict[str, Any]:
    return {
        "Role": role_arn,
        "Runtime": runtime_for(fn.config),
        "Handler": HANDLER,
        "Timeout": fn.config.timeout or DEFAULT_TIMEOUT_SECONDS,
        "MemorySize": memory_size(fn),
        "TracingConfig": {"Mode": "PassThrough"},
        "Environment": {"Variables": dict(environment)},
    }


def _role_not_assumable(e: ProviderError) -> bool:
    # Lambda rejects a role it cannot assume yet with a 400
    return e.status_code == 400 and e.code == "InvalidParameterValueException"


class ComputeReconciler:
    """Brings the scope's Lambda functions in line with the declared set."""

    def __init__(
        self,
        provider: ResourceProvider,
        scope: Scope,
        changes: ChangeLog,
        revision: str | None = None,
    ) -> None:
        self._provider = provider
        self._scope = scope
        self._changes = changes
        self._revision = revision

    async def sync(
        self,
        declared: list[DeclaredFunction],
        current: list[RemoteFunction],
        environment: dict[str, str],
        role_arn: str,
        artifacts: dict[str, PackagedArtifact],
    ) -> list[FunctionRef]:
        """Create, delete and update functions; return the applied set.

        Returns:
            References to every kept or created function.
        """
        diff = compare(declared, current)
        by_name = {fn.name: fn for fn in declared}
        packaged = {fn.name: self._artifact(artifacts, fn.name) for fn in declared}

        created = await asyncio.gather(
            *(
                self._create(fn, role_arn, environment, packaged[fn.name])
                for fn in diff.missing
            )
        )
        await asyncio.gather(*(self._delete(remote) for remote in diff.surplus))
        await asyncio.gather(
            *(
                self._update(
                    by_name[remote.name],
                    remote,
                    role_arn,
                    environment,
                    packaged[remote.name],
                )
                for remote in diff.existing
            )
        )

        return [FunctionRef(name=r.name, id=r.id) for r in diff.existing] + list(created)

    @staticmethod
    def _artifact(artifacts: dict[str, PackagedArtifact], name: str) -> PackagedArtifact:
        try:
            return artifacts[name]
        except KeyError:
            raise PackagingError(f"No packaged code for function {name}") from None

    async def _create(
        self,
        fn: DeclaredFunction,
        role_arn: str,
        environment: dict[str, str],
        artifact: PackagedArtifact,
    ) -> FunctionRef:
        config = self._provider.config
        params = {
            "FunctionName": self._scope.function_name(fn.name),
            "Code": {"ZipFile": artifact.zipped},
            "PackageType": "Zip",
            "Architectures": architectures(fn),
            "Tags": self._scope.tags(self._revision),
            **function_configuration(fn, role_arn, environment),
        }
        response = await self._changes.apply(
            ChangeType.CREATE,
            "function",
            fn.name,
            self._provider.retry(
                lambda: self._provider.create_resource(
                    FUNCTION, f"Error creating lambda {fn.name}", **params
                ),
                when=_role_not_assumable,
                max_retries=config.create_function_retries,
                delay_seconds=config.create_function_delay_seconds,
            ),
            detail=artifact.size,
        )
        return FunctionRef(name=fn.name, id=response["FunctionArn"])

    async def _delete(self, remote: RemoteFunction) -> None:
        await self._changes.apply(
            ChangeType.DELETE,
            "function",
            remote.name,
            self._provider.delete_resource(
                FUNCTION, remote.id, f"Error deleting lambda {remote.name}"
            ),
        )

    async def _update(
        self,
        fn: DeclaredFunction,
        remote: RemoteFunction,
        role_arn: str,
        environment: dict[str, str],
        artifact: PackagedArtifact,
    ) -> None:
        cpus = architectures(fn)
        full_name = self._scope.function_name(fn.name)
        if (cpus, artifact.sha256) != (remote.cpus, remote.hash):
            await self._changes.apply(
                ChangeType.UPDATE,
                "function code",
                fn.name,
                self._provider.call(
                    "lambda",
                    "update_function_code",
                    f"Error updating code for lambda {fn.name}",
                    FunctionName=full_name,
                    ZipFile=artifact.zipped,
                    Architectures=cpus,
                ),
                detail=f"{remote.size} -> {artifact.size}",
            )

        desired = function_configuration(fn, role_arn, environment)
        if (
            desired["Environment"]["Variables"],
            desired["MemorySize"],
            desired["Timeout"],
            desired["Runtime"],
        ) != (remote.env, remote.memory, remote.timeout, remote.runtime):
            await self._changes.apply(
                ChangeType.UPDATE,
                "function configuration",
                fn.name,
                self._provider.retry_conflict(
                    lambda: self._provider.update_resource(
                        FUNCTION,
                        full_name,
                        f"Error updating config for lambda {fn.name}",
                        **desired,
                    )
                ),
            )
