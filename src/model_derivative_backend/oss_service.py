"""
OSS service module for bucket management and object uploads.

This module provides functionality for:
- Checking for and creating the bucket that holds uploaded CAD files
- Listing every object in the bucket, following pagination
- Uploading files through signed S3 upload URLs

The bucket key is configured via the APS_BUCKET environment variable.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import parse_qs, quote, urlparse

import httpx
from pydantic import ValidationError

from .auth import TokenProvider
from .exceptions import StorageError
from .models import StoredObject

logger = logging.getLogger(__name__)


def _start_at(next_url: str) -> Optional[str]:
    """Extract the ``startAt`` continuation token from a ``next`` link."""
    values = parse_qs(urlparse(next_url).query).get("startAt")
    return values[0] if values else None


class OssService:
    """
    Client for the APS Object Storage Service.

    Attributes:
        bucket_key: Bucket holding the uploaded CAD files
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        base_url: str,
        bucket_key: str,
        page_limit: int = 64,
        upload_expiration_minutes: int = 15,
    ) -> None:
        self._http = http_client
        self._tokens = token_provider
        self._api = base_url.rstrip("/") + "/oss/v2"
        self.bucket_key = bucket_key
        self._page_limit = page_limit
        self._upload_expiration_minutes = upload_expiration_minutes

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {await self._tokens.get_access_token()}"
        try:
            return await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise StorageError(f"OSS request {method} {url} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        logger.error(f"OSS {action} failed with status {response.status_code}: {response.text}")
        raise StorageError(
            f"OSS {action} failed with status {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )

    @staticmethod
    def _read_json(response: httpx.Response, action: str) -> dict:
        try:
            body = response.json()
        except ValueError as exc:
            raise StorageError(
                f"OSS {action} returned an unreadable body",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(body, dict):
            raise StorageError(
                f"OSS {action} returned an unexpected body",
                status_code=response.status_code,
                body=response.text,
            )
        return body

    def _object_url(self, bucket_key: str, object_key: str) -> str:
        return f"{self._api}/buckets/{bucket_key}/objects/{quote(object_key, safe='')}"

    async def bucket_exists(self, bucket_key: str) -> bool:
        """
        Check if a bucket exists.

        Returns:
            True if the bucket exists, False if the service answers 404

        Raises:
            StorageError: For any other failure
        """
        logger.info(f"Checking if bucket {bucket_key} exists")
        response = await self._request("GET", f"{self._api}/buckets/{bucket_key}/details")
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"bucket lookup for {bucket_key}")
        return True

    async def ensure_bucket_exists(self, bucket_key: str) -> None:
        """Create the bucket with a temporary retention policy if it is missing."""
        logger.info(f"Ensuring bucket {bucket_key} exists")
        if await self.bucket_exists(bucket_key):
            return
        response = await self._request(
            "POST",
            f"{self._api}/buckets",
            json={"bucketKey": bucket_key, "policyKey": "temporary"},
        )
        self._raise_for_status(response, f"bucket creation for {bucket_key}")
        logger.info(f"Created bucket {bucket_key}")

    async def list_objects(self) -> List[StoredObject]:
        """
        List every object in the configured bucket.

        Pages are requested until the service stops returning a ``next`` link.
        """
        logger.info(f"Listing objects in bucket {self.bucket_key}")
        await self.ensure_bucket_exists(self.bucket_key)

        objects: List[StoredObject] = []
        params = {"limit": self._page_limit}
        while True:
            response = await self._request("GET", f"{self._api}/buckets/{self.bucket_key}/objects", params=params)
            self._raise_for_status(response, f"object listing for {self.bucket_key}")
            body = self._read_json(response, f"object listing for {self.bucket_key}")
            logger.debug(f"Object listing page: {body}")
            try:
                objects.extend(StoredObject.model_validate(item) for item in body.get("items") or [])
            except ValidationError as exc:
                raise StorageError(
                    f"OSS object listing for {self.bucket_key} could not be read: {exc}",
                    status_code=response.status_code,
                    body=response.text,
                ) from exc

            next_url = body.get("next")
            start_at = _start_at(next_url) if next_url else None
            if not start_at:
                break
            logger.info(f"Getting more objects, startAt: {start_at}")
            params = {"limit": self._page_limit, "startAt": start_at}

        logger.info(f"Found {len(objects)} objects in bucket {self.bucket_key}")
        return objects

    async def upload_object(self, object_key: str, data: bytes) -> StoredObject:
        """
        Upload bytes as ``object_key`` into the configured bucket.

        The upload uses the signed S3 flow: request a signed URL, PUT the
        bytes to it, then complete the upload with the returned upload key.

        Returns:
            The stored object details, including the object ID used for translation
        """
        logger.info(f"Uploading {len(data)} bytes to {object_key}")
        await self.ensure_bucket_exists(self.bucket_key)
        signed_url = self._object_url(self.bucket_key, object_key) + "/signeds3upload"

        response = await self._request(
            "GET",
            signed_url,
            params={"minutesExpiration": self._upload_expiration_minutes},
        )
        self._raise_for_status(response, f"signed upload request for {object_key}")
        signed = self._read_json(response, f"signed upload request for {object_key}")
        urls = signed.get("urls") or []
        if not urls or not signed.get("uploadKey"):
            raise StorageError(f"OSS returned no upload URL for {object_key}", body=response.text)

        try:
            put_response = await self._http.put(urls[0], content=data)
        except httpx.HTTPError as exc:
            raise StorageError(f"Upload of {object_key} failed: {exc}") from exc
        self._raise_for_status(put_response, f"upload of {object_key}")

        response = await self._request("POST", signed_url, json={"uploadKey": signed["uploadKey"]})
        self._raise_for_status(response, f"upload completion for {object_key}")
        try:
            stored = StoredObject.model_validate(self._read_json(response, f"upload completion for {object_key}"))
        except ValidationError as exc:
            raise StorageError(
                f"OSS upload completion for {object_key} could not be read: {exc}",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        logger.info(f"Upload successful: {stored.object_id}")
        return stored
