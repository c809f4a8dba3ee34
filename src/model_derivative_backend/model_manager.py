"""
Model orchestration for the CAD translation workflow.

This module coordinates the operations the API exposes:
- Listing uploaded models with their translation URNs
- Uploading a model and submitting its translation
- Reporting translation status with flattened diagnostic messages
- Parsing the manifest into property derivatives
- Downloading the property derivatives into a result directory

The ModelManager class holds no job state of its own. The remote service is
the source of truth, and every call fetches what it needs afresh.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import httpx
from omegaconf import DictConfig

from .auth import TokenProvider
from .derivative_service import DerivativeService
from .manifest import aggregate_messages, parse_manifest
from .models import AccessToken, ModelStatus, ModelSummary, ParsedManifestSummary, PropertiesDownload
from .oss_service import OssService
from .utils import ensure_result_directory, urnify

logger = logging.getLogger(__name__)

NOT_AVAILABLE_STATUS = "n/a"
PROPERTY_DB_FILENAME = "properties.sqlite"
MODEL_DATA_FILENAME = "properties.json"


class ModelManager:
    """
    Central coordinator for model uploads, translations and derivatives.

    Attributes:
        results_root: Base directory for downloaded derivatives
    """

    def __init__(
        self,
        oss: OssService,
        derivatives: DerivativeService,
        public_tokens: TokenProvider,
        results_root: Path,
    ) -> None:
        self._oss = oss
        self._derivatives = derivatives
        self._public_tokens = public_tokens
        self.results_root = results_root

    async def list_models(self) -> List[ModelSummary]:
        """Get every object in the bucket with its translation URN."""
        objects = await self._oss.list_objects()
        return [ModelSummary(name=obj.object_key, urn=urnify(obj.object_id)) for obj in objects]

    async def create_model(self, file_name: str, data: bytes, root_filename: Optional[str] = None) -> ModelSummary:
        """
        Upload a CAD file and start its translation.

        Args:
            file_name: Object key for the upload
            data: File contents
            root_filename: Entry point file when ``data`` is a zip archive

        Returns:
            ModelSummary whose URN is used for later status queries
        """
        stored = await self._oss.upload_object(file_name, data)
        urn = urnify(stored.object_id)
        await self._derivatives.translate(urn, root_filename)
        return ModelSummary(name=stored.object_key, urn=urn)

    async def get_status(self, urn: str) -> ModelStatus:
        """
        Get the translation status for a model.

        Returns:
            ModelStatus with status "n/a" when the service does not know the job
        """
        manifest = await self._derivatives.get_manifest(urn)
        if manifest is None:
            return ModelStatus(status=NOT_AVAILABLE_STATUS)
        return ModelStatus(
            status=manifest.status.value,
            progress=manifest.progress,
            messages=aggregate_messages(manifest),
        )

    async def get_properties(self, urn: str) -> ParsedManifestSummary:
        """
        Parse the manifest into the property derivative URNs.

        Raises:
            ManifestError: If no manifest exists or it has no derivatives
        """
        manifest = await self._derivatives.get_manifest(urn)
        return parse_manifest(manifest)

    async def download_properties(self, urn: str) -> PropertiesDownload:
        """
        Download the property database and model data into the result directory.

        Both derivatives are resolved and downloaded concurrently. A derivative
        whose URN is not available yet is skipped and its path left empty.

        Raises:
            ManifestError: If no manifest exists or it has no derivatives
            AllocationError: If the result directory cannot be created
            ResolveFailed: If a derivative cannot be resolved or downloaded
        """
        summary = await self.get_properties(urn)
        result_dir = ensure_result_directory(self.results_root, summary.cad_file_name)

        # Wait for both downloads to settle before reporting a failure.
        results = await asyncio.gather(
            self._fetch_derivative(urn, summary.property_db_urn, result_dir / PROPERTY_DB_FILENAME),
            self._fetch_derivative(urn, summary.model_data_urn, result_dir / MODEL_DATA_FILENAME),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        property_db_path, model_data_path = results
        return PropertiesDownload(
            cad_file_name=summary.cad_file_name,
            result_dir=str(result_dir),
            property_db_path=property_db_path,
            model_data_path=model_data_path,
        )

    async def _fetch_derivative(self, urn: str, derivative_urn: str, destination: Path) -> str:
        if not derivative_urn:
            logger.info(f"Derivative for {destination.name} not available yet")
            return ""
        download = await self._derivatives.get_derivative_download(urn, derivative_urn)
        path = await self._derivatives.download_derivative(download, destination, derivative_urn)
        return str(path)

    async def get_public_token(self) -> AccessToken:
        """Get a viewer token limited to the public scopes."""
        return await self._public_tokens.get_token()


def build_model_manager(settings: DictConfig, http_client: httpx.AsyncClient) -> ModelManager:
    """Wire the APS clients described by ``settings`` into a ModelManager."""
    aps = settings.aps
    internal_tokens = TokenProvider(
        http_client,
        aps.client_id,
        aps.client_secret,
        list(aps.internal_scopes),
        aps.base_url,
    )
    public_tokens = TokenProvider(
        http_client,
        aps.client_id,
        aps.client_secret,
        list(aps.public_scopes),
        aps.base_url,
    )
    oss = OssService(
        http_client,
        internal_tokens,
        aps.base_url,
        aps.bucket,
        page_limit=settings.storage.page_limit,
        upload_expiration_minutes=settings.storage.upload_expiration_minutes,
    )
    derivatives = DerivativeService(
        http_client,
        internal_tokens,
        aps.base_url,
        output_format=settings.translation.format,
        views=list(settings.translation.views),
    )
    return ModelManager(oss, derivatives, public_tokens, Path(settings.results.base_dir))
