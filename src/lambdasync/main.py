"""Deploy entry point.

A deploy loads the project's reflection document and the environment's glue
file, packages the bundled code, reads the live state of the scope and
reconciles it. Nothing is kept between deploys: every run starts from a
fresh read of AWS.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import boto3

from .config import Config, ConfigurationError
from .credentials import CredentialResolver, CredentialsError
from .packaging import PackagingError, package
from .provider import ProviderError, ResourceProvider
from .reconciler import Reconciler, SyncResult
from .resolver import Resolver
from .scope import Scope
from .spec_loader import GlueNotFoundError, SpecLoadError, load_glue, load_reflection
from .state import read_current_state

logger = logging.getLogger(__name__)

GLUE_NOT_FOUND_MESSAGE = (
    "Glue not found. Try to see if there isn't a glue project you can clone next to this project."
)

# LogRecord attributes that are not structured extras
_RECORD_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_output: bool = False, verbose: bool = False) -> None:
    """Send log output to stdout, as JSON lines or as plain progress messages."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Reduce noise from the AWS SDK
    for name in ("boto3", "botocore", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


async def deploy(
    environment: str,
    project_path: Path | str,
    glue_file: Path | str | None = None,
    *,
    config: Config | None = None,
    session: boto3.Session | None = None,
) -> SyncResult:
    """Deploy the project at ``project_path`` to ``environment``.

    Args:
        environment: Environment name, also the default credentials profile.
        project_path: Project directory holding the reflection document.
        glue_file: Glue file overriding ``<project>/../glue/glue.json``.
        config: Preloaded configuration; loaded from the environment if omitted.
        session: boto3 session to use instead of resolving credentials.

    Raises:
        GlueNotFoundError: If the glue file does not exist.
        SpecLoadError: If the reflection document or glue file is invalid.
        ConfigurationError: If the configuration or declared set is invalid.
        PackagingError: If bundled code is missing.
        ProviderError: If an AWS call fails.
    """
    if config is None:
        config = Config.load(environment, project_path, glue_file)

    glue = load_glue(config.glue_path)
    reflection = load_reflection(config.reflection_path)
    settings = glue.for_service(reflection.name)
    scope = Scope(environment=config.environment, service=settings.service)
    declared = reflection.functions()

    logger.info(
        f"Deploying {settings.service} to {config.environment}",
        extra={
            "environment": config.environment,
            "service": settings.service,
            "revision": reflection.revision,
            "functions": len(declared),
        },
    )

    if session is None:
        session = CredentialResolver().session(config.credentials_profile, config.region)
    provider = ResourceProvider(session, config)

    artifacts = package(declared, config.stage_path)
    resolved_env, current = await asyncio.gather(
        Resolver(provider).resolve_environment(settings.env, config.environment),
        read_current_state(provider, scope),
    )
    return await Reconciler(provider, scope).sync(
        current, declared, settings, resolved_env, artifacts, reflection.revision
    )


async def run_deploy(
    environment: str,
    project_path: Path | str,
    glue_file: Path | str | None = None,
) -> tuple[int, SyncResult | None]:
    """Run a deploy and map its failure to an exit code.

    Returns:
        Exit code (0 for success, 1 for input errors, 2 for AWS errors) and
        the sync result when the deploy succeeded.
    """
    try:
        return 0, await deploy(environment, project_path, glue_file)
    except GlueNotFoundError as e:
        logger.error(GLUE_NOT_FOUND_MESSAGE, extra={"path": str(e.path)})
        return 1, None
    except (ConfigurationError, SpecLoadError, PackagingError, CredentialsError) as e:
        logger.error(str(e), extra={"error_type": type(e).__name__})
        return 1, None
    except ProviderError as e:
        logger.error(
            str(e),
            extra={
                "error_type": type(e).__name__,
                "status_code": e.status_code,
                "code": e.code,
            },
        )
        return 2, None
    except Exception as e:
        # Unexpected error - log with full traceback for debugging
        logger.exception("Deploy failed unexpectedly", extra={"error": str(e)})
        return 1, None
