"""Configuration management with validation.

Every tunable that affects how the synchronizer talks to AWS is loaded
once, validated at construction time and then passed around explicitly.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails.

    Also raised for declarations that cannot be mapped onto AWS, such as an
    unsupported engine requirement or a CPU preference with no match.
    """

    pass


# Configuration constants with documented bounds
DEFAULT_ROLE_SETTLE_SECONDS = 10.0
MAX_ROLE_SETTLE_SECONDS = 120.0

DEFAULT_CONFLICT_DEADLINE_SECONDS = 30.0
DEFAULT_CONFLICT_DELAY_SECONDS = 0.25
MAX_CONFLICT_DEADLINE_SECONDS = 600.0

DEFAULT_MAX_THROTTLE_RETRIES = 5
MAX_THROTTLE_RETRIES = 20
DEFAULT_THROTTLE_DELAY_SECONDS = 1.0
DEFAULT_THROTTLE_JITTER_SECONDS = 1.0

# A freshly created role is not assumable by Lambda for a few seconds
DEFAULT_CREATE_FUNCTION_RETRIES = 25
DEFAULT_CREATE_FUNCTION_DELAY_SECONDS = 0.5

DEFAULT_CALL_TIMEOUT_SECONDS = 120.0

# IAM is a global service served from us-east-1
IAM_REGION = "us-east-1"

# Input limits
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max reflection/glue file
MAX_ARTIFACT_SIZE_BYTES = 50 * 1024 * 1024  # Lambda direct upload limit

DEFAULT_REFLECTION_FILENAME = "reflection.json"
DEFAULT_STAGE_DIRNAME = "dist"
GLUE_DIRNAME = "glue"
GLUE_FILENAME = "glue.json"

# Input validation patterns
VALID_ENVIRONMENT_PATTERN = r"^[a-z][a-z0-9-]{0,30}[a-z0-9]$"
VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"


@dataclass(frozen=True)
class Config:
    """Synchronizer configuration for one (environment, project) run.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing half way
    through a sync.
    """

    # Required fields
    environment: str
    project_path: Path

    # Paths
    glue_file: Path | None = None
    reflection_file: Path | None = None
    stage_dir: Path | None = None

    # Credentials
    profile: str | None = None
    region: str | None = None

    # Timing
    role_settle_seconds: float = DEFAULT_ROLE_SETTLE_SECONDS
    conflict_deadline_seconds: float = DEFAULT_CONFLICT_DEADLINE_SECONDS
    conflict_delay_seconds: float = DEFAULT_CONFLICT_DELAY_SECONDS
    max_throttle_retries: int = DEFAULT_MAX_THROTTLE_RETRIES
    throttle_delay_seconds: float = DEFAULT_THROTTLE_DELAY_SECONDS
    throttle_jitter_seconds: float = DEFAULT_THROTTLE_JITTER_SECONDS
    create_function_retries: int = DEFAULT_CREATE_FUNCTION_RETRIES
    create_function_delay_seconds: float = DEFAULT_CREATE_FUNCTION_DELAY_SECONDS
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.environment:
            errors.append("environment name is required")
        elif not re.match(VALID_ENVIRONMENT_PATTERN, self.environment):
            errors.append(
                f"environment name must match pattern {VALID_ENVIRONMENT_PATTERN}: "
                f"{self.environment}"
            )

        if not self.project_path.is_dir():
            errors.append(f"Project directory does not exist: {self.project_path}")

        if self.region is not None and not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        if not (0 <= self.role_settle_seconds <= MAX_ROLE_SETTLE_SECONDS):
            errors.append(
                f"LAMBDASYNC_ROLE_SETTLE_SECONDS must be between 0 and {MAX_ROLE_SETTLE_SECONDS}"
            )

        if not (0 <= self.conflict_deadline_seconds <= MAX_CONFLICT_DEADLINE_SECONDS):
            errors.append(
                "LAMBDASYNC_CONFLICT_DEADLINE_SECONDS must be between 0 and "
                f"{MAX_CONFLICT_DEADLINE_SECONDS}"
            )

        if not (0 <= self.max_throttle_retries <= MAX_THROTTLE_RETRIES):
            errors.append(
                f"LAMBDASYNC_MAX_THROTTLE_RETRIES must be between 0 and {MAX_THROTTLE_RETRIES}"
            )

        if self.conflict_delay_seconds < 0 or self.throttle_delay_seconds < 0:
            errors.append("retry delays cannot be negative")

        if self.throttle_jitter_seconds < 0 or self.create_function_delay_seconds < 0:
            errors.append("retry jitter and delays cannot be negative")

        if self.create_function_retries < 0:
            errors.append("create_function_retries cannot be negative")

        if self.call_timeout_seconds <= 0:
            errors.append("LAMBDASYNC_CALL_TIMEOUT_SECONDS must be positive")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def reflection_path(self) -> Path:
        """Location of the reflection document for the project."""
        return self.reflection_file or self.project_path / DEFAULT_REFLECTION_FILENAME

    @property
    def stage_path(self) -> Path:
        """Directory holding the bundled function artifacts."""
        return self.stage_dir or self.project_path / DEFAULT_STAGE_DIRNAME

    @property
    def glue_path(self) -> Path:
        """Glue file, defaulting to a glue project cloned next to this one."""
        if self.glue_file is not None:
            return self.glue_file
        return self.project_path.resolve().parent / GLUE_DIRNAME / GLUE_FILENAME

    @property
    def credentials_profile(self) -> str:
        """AWS profile used when the environment holds no credentials."""
        return self.profile or self.environment

    @classmethod
    def load(
        cls,
        environment: str,
        project_path: Path | str,
        glue_file: Path | str | None = None,
    ) -> Config:
        """Load configuration for a run from arguments and environment variables.

        Environment Variables:
            AWS_REGION / AWS_DEFAULT_REGION: Target region (default: from profile)
            AWS_PROFILE: Credentials profile (default: the environment name)
            LAMBDASYNC_REFLECTION_FILE: Reflection document (default: <project>/reflection.json)
            LAMBDASYNC_STAGE_DIR: Bundled artifacts (default: <project>/dist)
            LAMBDASYNC_ROLE_SETTLE_SECONDS: Wait after creating the role (default: 10)
            LAMBDASYNC_CONFLICT_DEADLINE_SECONDS: Conflict retry deadline (default: 30)
            LAMBDASYNC_MAX_THROTTLE_RETRIES: Throttle retries per call (default: 5)
            LAMBDASYNC_CALL_TIMEOUT_SECONDS: Timeout per AWS call (default: 120)
        """

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key)
            return Path(value) if value else None

        return cls(
            environment=environment,
            project_path=Path(project_path),
            glue_file=Path(glue_file) if glue_file else None,
            reflection_file=get_path("LAMBDASYNC_REFLECTION_FILE"),
            stage_dir=get_path("LAMBDASYNC_STAGE_DIR"),
            profile=os.environ.get("AWS_PROFILE") or None,
            region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or None,
            role_settle_seconds=get_float(
                "LAMBDASYNC_ROLE_SETTLE_SECONDS", DEFAULT_ROLE_SETTLE_SECONDS
            ),
            conflict_deadline_seconds=get_float(
                "LAMBDASYNC_CONFLICT_DEADLINE_SECONDS", DEFAULT_CONFLICT_DEADLINE_SECONDS
            ),
            max_throttle_retries=get_int(
                "LAMBDASYNC_MAX_THROTTLE_RETRIES", DEFAULT_MAX_THROTTLE_RETRIES
            ),
            call_timeout_seconds=get_float(
                "LAMBDASYNC_CALL_TIMEOUT_SECONDS", DEFAULT_CALL_TIMEOUT_SECONDS
            ),
        )
