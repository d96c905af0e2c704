"""Loading of the reflection document and the glue file.

Both inputs may be written as JSON or YAML (JSON is a subset of YAML, so a
single safe YAML parser reads either). File sizes are checked before reading
and validation errors are reported per field.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import Glue, Reflection

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class SpecLoadError(Exception):
    """Raised when an input document cannot be loaded or fails validation."""

    pass


class GlueNotFoundError(SpecLoadError):
    """Raised when the glue file does not exist."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Glue file not found: {path}")
        self.path = path


def _read_mapping(path: Path, kind: str) -> dict[str, Any]:
    try:
        file_size = path.stat().st_size
    except FileNotFoundError:
        raise
    except OSError as e:
        raise SpecLoadError(f"Failed to stat {kind} file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"{kind.capitalize()} file exceeds maximum size of "
            f"{MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read {kind} file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid {kind} file {path}: {e}") from e

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"{kind.capitalize()} file must contain a mapping: {path}")
    return raw_data


def _validate(model: type[ModelT], data: dict[str, Any], path: Path) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e


def load_reflection(path: Path) -> Reflection:
    """Load and validate the declared function set.

    Raises:
        SpecLoadError: If the document is missing, malformed or invalid.
    """
    try:
        raw_data = _read_mapping(path, "reflection")
    except FileNotFoundError as e:
        raise SpecLoadError(f"Reflection file not found: {path}") from e

    reflection = _validate(Reflection, raw_data, path)
    logger.info(
        "Loaded reflection for '%s' from %s",
        reflection.name,
        path,
        extra={
            "http": len(reflection.http),
            "timers": len(reflection.timers),
            "events": len(reflection.events),
        },
    )
    return reflection


def load_glue(path: Path) -> Glue:
    """Load and validate the glue file.

    Raises:
        GlueNotFoundError: If there is no glue file at ``path``.
        SpecLoadError: If the file is malformed or invalid.
    """
    try:
        raw_data = _read_mapping(path, "glue")
    except FileNotFoundError as e:
        raise GlueNotFoundError(path) from e

    glue = _validate(Glue, raw_data, path)
    logger.info("Loaded glue from %s", path)
    return glue
