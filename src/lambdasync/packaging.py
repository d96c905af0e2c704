"""Packaging of bundled function code into Lambda deployment archives.

Bundling itself happens before a sync; this module only wraps each bundled
``.js`` file into a zip whose bytes depend on nothing but the code, so that
the content hash is stable across machines and runs.
"""

from __future__ import annotations

import base64
import hashlib
import io
import logging
import math
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .config import MAX_ARTIFACT_SIZE_BYTES
from .models import DeclaredFunction

logger = logging.getLogger(__name__)

ENTRY_FILENAME = "index.js"
# Fixed timestamp keeps archives byte-identical for identical code
ENTRY_DATE_TIME = (2022, 9, 1, 0, 0, 0)
COMPRESS_LEVEL = 9


class PackagingError(Exception):
    """Raised when a declared function has no usable bundled artifact."""

    pass


@dataclass(frozen=True)
class PackagedArtifact:
    zipped: bytes
    sha256: str
    size: str


def describe_size(size: int) -> str:
    """Human-readable size, in bytes below 1 KiB, else KiB rounded up to 0.1."""
    if size < 1024:
        return f"{size} bytes"
    return f"{math.ceil(size / 102.4) / 10} KiB"


def zip_code(code: bytes) -> PackagedArtifact:
    """Wrap ``code`` as ``index.js`` in a deterministic zip archive."""
    info = zipfile.ZipInfo(ENTRY_FILENAME, date_time=ENTRY_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = 3
    info.external_attr = 0o644 << 16

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(info, code, compresslevel=COMPRESS_LEVEL)
    zipped = buffer.getvalue()

    return PackagedArtifact(
        zipped=zipped,
        sha256=base64.b64encode(hashlib.sha256(zipped).digest()).decode("ascii"),
        size=describe_size(len(zipped)),
    )


def artifact_path(stage_dir: Path, fn: DeclaredFunction) -> Path:
    if fn.code:
        return stage_dir / fn.code
    return stage_dir / f"{fn.name}.js"


def package(functions: Iterable[DeclaredFunction], stage_dir: Path) -> dict[str, PackagedArtifact]:
    """Package the bundled code of every declared function.

    Raises:
        PackagingError: If an artifact is missing, unreadable or too large.
    """
    packaged: dict[str, PackagedArtifact] = {}
    for fn in functions:
        path = artifact_path(stage_dir, fn)
        try:
            code = path.read_bytes()
        except FileNotFoundError as e:
            raise PackagingError(f"No bundled code for function {fn.name}: {path}") from e
        except OSError as e:
            raise PackagingError(f"Failed to read bundled code {path}: {e}") from e

        artifact = zip_code(code)
        if len(artifact.zipped) > MAX_ARTIFACT_SIZE_BYTES:
            raise PackagingError(
                f"Package for function {fn.name} is {artifact.size}, "
                f"above the {describe_size(MAX_ARTIFACT_SIZE_BYTES)} upload limit"
            )
        logger.debug(f"packaged {fn.name} ({artifact.size})")
        packaged[fn.name] = artifact
    return packaged
