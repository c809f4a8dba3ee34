"""
Manifest parsing and status message aggregation.

A derivative is usable only when it passes the completeness filter: its
output type contains the SVF marker, its progress is "complete", its status
is "success" and it has children. The parser reads the CAD file name and the
property database / model data URNs from every usable derivative, letting
later derivatives and children overwrite earlier ones.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .exceptions import ManifestError
from .models import Derivative, Manifest, ParsedManifestSummary

logger = logging.getLogger(__name__)

# Substring match: outputType may list several co-encoded formats ("svf2", ...).
SVF_OUTPUT_MARKER = "svf"
COMPLETE_PROGRESS = "complete"
SUCCESS_STATUS = "success"
RESOURCE_TYPE = "resource"
PROPERTY_DATABASE_ROLE = "Autodesk.CloudPlatform.PropertyDatabase"
MODEL_DATA_ROLE = "Autodesk.AEC.ModelData"


def is_complete(derivative: Derivative) -> bool:
    return (
        SVF_OUTPUT_MARKER in (derivative.output_type or "")
        and derivative.progress == COMPLETE_PROGRESS
        and derivative.status == SUCCESS_STATUS
        and bool(derivative.children)
    )


def parse_manifest(manifest: Optional[Manifest]) -> ParsedManifestSummary:
    """
    Extract the CAD file name and the downloadable property derivatives.

    Args:
        manifest: The job manifest, or None when the job is unknown

    Returns:
        The summary; fields stay empty when no derivative is complete yet

    Raises:
        ManifestError: If no manifest was received or it has no derivatives
    """
    if manifest is None:
        raise ManifestError("no manifest received")
    if not manifest.derivatives:
        raise ManifestError("manifest has no derivatives")

    summary = ParsedManifestSummary()
    for derivative in manifest.derivatives:
        if not is_complete(derivative):
            continue
        summary.cad_file_name = derivative.name or ""
        for child in derivative.children or []:
            if child.type != RESOURCE_TYPE:
                continue
            if child.role == PROPERTY_DATABASE_ROLE:
                summary.property_db_urn = child.urn or ""
            if child.role == MODEL_DATA_ROLE:
                summary.model_data_urn = child.urn or ""

    logger.debug(f"Parsed manifest summary: {summary}")
    return summary


def aggregate_messages(manifest: Manifest) -> List[str]:
    """Flatten derivative and child messages, each node before its children."""
    messages: List[str] = []
    for derivative in manifest.derivatives or []:
        messages.extend(derivative.messages or [])
        for child in derivative.children or []:
            messages.extend(child.messages or [])
    return messages
