"""
Model Derivative service module for translation jobs and derivative downloads.

This module provides functionality for:
- Submitting translation jobs for uploaded objects
- Fetching a job's manifest (status, progress and derivative tree)
- Resolving signed cookies for downloading a single derivative
- Downloading derivative bytes with those cookies

Every method issues point-in-time requests; polling is left to the caller.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .auth import TokenProvider
from .exceptions import FetchFailed, ResolveFailed, SubmissionFailed
from .models import Manifest, SignedDownload, TranslationJob, TranslationOutputFormat

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class DerivativeService:
    """
    Client for the APS Model Derivative API.

    The output format and views requested for every translation are fixed
    at construction time.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        base_url: str,
        output_format: str = "svf2",
        views: Sequence[str] = ("2d", "3d"),
    ) -> None:
        self._http = http_client
        self._tokens = token_provider
        self._api = base_url.rstrip("/") + "/modelderivative/v2/designdata"
        self._output = TranslationOutputFormat(type=output_format, views=list(views))

    async def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self._tokens.get_access_token()}"}

    def build_translation_request(self, urn: str, root_filename: Optional[str] = None) -> Dict[str, Any]:
        """
        Build the job payload for a translation request.

        Args:
            urn: Urnified object ID of the uploaded file
            root_filename: Entry point inside a zip upload; empty for single files

        Returns:
            The JSON body expected by the job endpoint
        """
        job: Dict[str, Any] = {
            "input": {"urn": urn},
            "output": {"formats": [self._output.model_dump()]},
        }
        if root_filename:
            job["input"]["compressedUrn"] = True
            job["input"]["rootFilename"] = root_filename
        return job

    async def translate(self, urn: str, root_filename: Optional[str] = None) -> TranslationJob:
        """
        Start a translation job.

        Raises:
            SubmissionFailed: On transport errors, non-2xx responses or unreadable replies
        """
        logger.info(f"Starting translation for {urn}")
        job = self.build_translation_request(urn, root_filename)
        logger.debug(f"Translation job: {job}")
        try:
            response = await self._http.post(f"{self._api}/job", json=job, headers=await self._auth_headers())
        except httpx.HTTPError as exc:
            raise SubmissionFailed(f"Translation request for {urn} failed: {exc}") from exc

        if not response.is_success:
            raise SubmissionFailed(
                f"Translation request for {urn} rejected with status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        logger.debug(f"Translation response: {response.text}")
        try:
            return TranslationJob.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise SubmissionFailed(
                f"Translation response for {urn} could not be read: {exc}",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    async def get_manifest(self, urn: str) -> Optional[Manifest]:
        """
        Get the manifest (status and results) of a translation job.

        Returns:
            The manifest, or None if the service does not know the job (404)

        Raises:
            FetchFailed: On transport errors, other non-2xx responses or unreadable manifests
        """
        logger.info(f"Getting manifest for {urn}")
        try:
            response = await self._http.get(f"{self._api}/{urn}/manifest", headers=await self._auth_headers())
        except httpx.HTTPError as exc:
            raise FetchFailed(f"Manifest request for {urn} failed: {exc}") from exc

        if response.status_code == 404:
            logger.info(f"No manifest found for {urn}")
            return None
        if not response.is_success:
            raise FetchFailed(
                f"Manifest request for {urn} failed with status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        logger.debug(f"Manifest response: {response.text}")
        try:
            return Manifest.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise FetchFailed(
                f"Manifest for {urn} could not be read: {exc}",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    async def get_derivative_download(self, urn: str, derivative_urn: str) -> SignedDownload:
        """
        Get the signed download URL and cookie value for a derivative.

        The returned ``session_credential`` must be sent unmodified as the
        ``Cookie`` header when fetching ``url``.

        Args:
            urn: Urnified object ID of the translated model
            derivative_urn: Derivative URN extracted from the manifest

        Raises:
            ResolveFailed: On transport errors, non-2xx responses, or a response
                without a download URL or signed cookies
        """
        logger.info(f"Getting download URL for derivative {derivative_urn} of {urn}")
        url = f"{self._api}/{urn}/manifest/{quote(derivative_urn, safe='')}/signedcookies"
        try:
            response = await self._http.get(url, headers=await self._auth_headers())
        except httpx.HTTPError as exc:
            raise ResolveFailed(f"Download resolution failed: {exc}", derivative_urn) from exc

        if not response.is_success:
            raise ResolveFailed(
                f"Download resolution for {derivative_urn} failed with status {response.status_code}",
                derivative_urn,
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ResolveFailed(
                f"Download resolution for {derivative_urn} returned an unreadable body",
                derivative_urn,
                status_code=response.status_code,
                body=response.text,
            ) from exc
        cookies = response.headers.get_list("set-cookie")
        if not isinstance(data, dict) or not data.get("url") or not cookies:
            raise ResolveFailed(
                f"No signed download returned for {derivative_urn}",
                derivative_urn,
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return SignedDownload(
                url=data["url"],
                session_credential=";".join(cookies),
                etag=data.get("etag"),
                size=data.get("size"),
                content_type=data.get("content-type"),
                expiration=data.get("expiration"),
            )
        except ValidationError as exc:
            raise ResolveFailed(
                f"Download resolution for {derivative_urn} could not be read: {exc}",
                derivative_urn,
                status_code=response.status_code,
                body=response.text,
            ) from exc

    async def download_derivative(self, download: SignedDownload, destination: Path, derivative_urn: str = "") -> Path:
        """
        Stream a derivative's bytes from its signed URL into ``destination``.

        Bytes are written to a ``.part`` file next to ``destination``, which
        replaces ``destination`` only once the whole body has arrived.

        Raises:
            ResolveFailed: On transport errors or non-2xx responses
        """
        logger.info(f"Downloading derivative {derivative_urn} to {destination}")
        partial = destination.with_name(destination.name + ".part")
        try:
            async with self._http.stream("GET", download.url, headers={"Cookie": download.session_credential}) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ResolveFailed(
                        f"Download of {derivative_urn} failed with status {response.status_code}",
                        derivative_urn,
                        status_code=response.status_code,
                        body=body,
                    )
                with partial.open("wb") as buffer:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        buffer.write(chunk)
            partial.replace(destination)
        except httpx.HTTPError as exc:
            raise ResolveFailed(f"Download of {derivative_urn} failed: {exc}", derivative_urn) from exc
        finally:
            partial.unlink(missing_ok=True)
        return destination
