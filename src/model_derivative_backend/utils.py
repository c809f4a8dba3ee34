"""
Utility functions for identifier encoding and file system operations.

This module provides helper functions for:
- Encoding OSS object IDs into Model Derivative URNs
- Ensuring directory creation with proper error handling
- Allocating per-model result directories
"""

from __future__ import annotations

import base64
from pathlib import Path, PurePosixPath

from .exceptions import AllocationError


def urnify(object_id: str) -> str:
    """
    Encode an OSS object ID into the URN used by the Model Derivative API.

    The URN is the base64 encoding of the object ID with every padding
    character removed. The remote service expects exactly this form.

    Args:
        object_id: The OSS object ID, e.g. "urn:adsk.objects:os.object:bucket/house.rvt"

    Returns:
        The unpadded base64 URN

    Example:
        >>> urnify("a")
        "YQ"
    """
    return base64.b64encode(object_id.encode("utf-8")).decode("ascii").replace("=", "")


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    This is a safe idempotent operation that won't fail if the directory
    already exists.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_result_directory(base_dir: Path, cad_file_name: str) -> Path:
    """
    Allocate the result directory for a CAD file, creating it if absent.

    Only the basename of ``cad_file_name`` is used, so a name coming from an
    upstream manifest cannot point outside ``base_dir``.

    Args:
        base_dir: Base directory holding all result directories
        cad_file_name: CAD file name reported by the manifest

    Returns:
        Path to the result directory (the same path for repeated calls)

    Raises:
        AllocationError: If the name is empty or a directory cannot be created
    """
    if not cad_file_name:
        raise AllocationError("no CAD file name provided")

    # Manifests produced on Windows may carry backslash separators.
    dir_name = PurePosixPath(cad_file_name.replace("\\", "/")).name
    if dir_name in {"", ".", ".."}:
        raise AllocationError(f"invalid CAD file name: {cad_file_name!r}")

    try:
        ensure_directory(base_dir)
    except OSError as exc:
        raise AllocationError("Could not create base results directory.") from exc

    result_dir = base_dir / dir_name
    try:
        ensure_directory(result_dir)
    except OSError as exc:
        raise AllocationError("Could not create results directory.") from exc
    return result_dir
