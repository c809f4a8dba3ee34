"""
Pytest configuration and fixtures for Model Derivative Backend tests.

APS is replaced by ``FakeAps``, an in-memory stand-in served through
``httpx.MockTransport``, so the real clients run end to end without network.
"""

import asyncio
import json
import os
import tempfile
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import parse_qsl, unquote

import httpx
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["APS_CLIENT_ID"] = "test-client-id"
os.environ["APS_CLIENT_SECRET"] = "test-client-secret"
os.environ["APS_BUCKET"] = "test-bucket"
os.environ["RESULTS_DIR"] = tempfile.mkdtemp(prefix="mdb_test_results_")

from model_derivative_backend.configuration import make_settings
from model_derivative_backend.main import app, get_model_manager
from model_derivative_backend.model_manager import build_model_manager

BASE_URL = "https://aps.test"
UPLOAD_HOST = "s3.aps.test"
CDN_HOST = "cdn.aps.test"
DESIGNDATA_PREFIX = "/modelderivative/v2/designdata/"

PROPERTY_DB_URN = "urn:adsk.viewing:fs.file:abc/output/Resource/model.sdb"
MODEL_DATA_URN = "urn:adsk.viewing:fs.file:abc/output/Resource/AECModelData.json"


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in small chunks, optionally dropping the connection part way."""

    def __init__(self, data: bytes, chunk_size: int = 4, reset_at: Optional[int] = None) -> None:
        self.data = data
        self.chunk_size = chunk_size
        self.reset_at = reset_at

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for offset in range(0, len(self.data), self.chunk_size):
            if self.reset_at is not None and offset >= self.reset_at:
                raise httpx.ReadError("connection reset by peer")
            await asyncio.sleep(0)
            yield self.data[offset:offset + self.chunk_size]


class FakeAps:
    """In-memory APS: authentication, OSS and Model Derivative endpoints."""

    def __init__(self) -> None:
        self.token_requests: List[Dict[str, str]] = []
        self.token_expires_in = 3600
        self.buckets: set[str] = set()
        self.objects: List[Dict[str, Any]] = []
        self.uploads: Dict[str, Dict[str, Any]] = {}
        self.translations: List[Dict[str, Any]] = []
        self.manifests: Dict[str, Dict[str, Any]] = {}
        self.failures: Dict[str, int] = {}
        self.gateway_pages: List[str] = []
        self.derivative_files: Dict[str, bytes] = {}
        self.cookie = "CloudFront-Policy=p1;CloudFront-Signature=s1"
        self.send_cookies = True
        self.stream_chunk_size: Optional[int] = None
        self.reset_at: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.raw_path.decode("ascii").split("?")[0]
        for prefix, status_code in self.failures.items():
            if path.startswith(prefix):
                return httpx.Response(status_code, text=f"forced failure for {path}")
        for prefix in self.gateway_pages:
            if path.startswith(prefix):
                return httpx.Response(
                    200,
                    text="<html><body>504 Gateway Time-out</body></html>",
                    headers={"content-type": "text/html"},
                )

        if request.url.host == UPLOAD_HOST:
            return self._handle_s3_put(request, path)
        if request.url.host == CDN_HOST:
            return self._handle_cdn(request, path)
        if path == "/authentication/v2/token":
            return self._handle_token(request)
        if path.startswith("/oss/v2/buckets"):
            return self._handle_oss(request, path)
        if path.startswith(DESIGNDATA_PREFIX):
            return self._handle_derivatives(request, path)
        return httpx.Response(404, text="unknown endpoint")

    def _handle_token(self, request: httpx.Request) -> httpx.Response:
        self.token_requests.append(dict(parse_qsl(request.content.decode())))
        return httpx.Response(
            200,
            json={
                "access_token": f"token-{len(self.token_requests)}",
                "token_type": "Bearer",
                "expires_in": self.token_expires_in,
            },
        )

    def _handle_oss(self, request: httpx.Request, path: str) -> httpx.Response:
        parts = path.split("/")
        if len(parts) == 4 and request.method == "POST":
            payload = json.loads(request.content)
            self.buckets.add(payload["bucketKey"])
            return httpx.Response(200, json={"bucketKey": payload["bucketKey"], "policyKey": payload["policyKey"]})

        bucket_key = parts[4]
        rest = parts[5:]
        if rest == ["details"]:
            if bucket_key not in self.buckets:
                return httpx.Response(404, json={"reason": "Bucket not found"})
            return httpx.Response(200, json={"bucketKey": bucket_key})
        if rest == ["objects"]:
            start = int(request.url.params.get("startAt", 0))
            limit = int(request.url.params["limit"])
            body: Dict[str, Any] = {"items": self.objects[start:start + limit]}
            if start + limit < len(self.objects):
                body["next"] = f"{BASE_URL}/oss/v2/buckets/{bucket_key}/objects?startAt={start + limit}&limit={limit}"
            return httpx.Response(200, json=body)
        if len(rest) == 3 and rest[0] == "objects" and rest[2] == "signeds3upload":
            object_key = unquote(rest[1])
            if request.method == "GET":
                upload_key = f"upload-{len(self.uploads) + 1}"
                self.uploads[upload_key] = {"object_key": object_key, "bucket_key": bucket_key, "data": None}
                return httpx.Response(200, json={"uploadKey": upload_key, "urls": [f"https://{UPLOAD_HOST}/{upload_key}"]})
            upload = self.uploads[json.loads(request.content)["uploadKey"]]
            stored = {
                "bucketKey": bucket_key,
                "objectKey": object_key,
                "objectId": f"urn:adsk.objects:os.object:{bucket_key}/{object_key}",
                "size": len(upload["data"] or b""),
                "location": f"{BASE_URL}/oss/v2/buckets/{bucket_key}/objects/{object_key}",
            }
            self.objects.append(stored)
            return httpx.Response(200, json=stored)
        return httpx.Response(404, text="unknown OSS endpoint")

    def _handle_s3_put(self, request: httpx.Request, path: str) -> httpx.Response:
        self.uploads[path.lstrip("/")]["data"] = request.content
        return httpx.Response(200)

    def _handle_derivatives(self, request: httpx.Request, path: str) -> httpx.Response:
        parts = path[len(DESIGNDATA_PREFIX):].split("/")
        if parts == ["job"] and request.method == "POST":
            job = json.loads(request.content)
            self.translations.append(job)
            return httpx.Response(
                200,
                json={"result": "created", "urn": job["input"]["urn"], "acceptedJobs": {"output": job["output"]}},
            )
        urn = parts[0]
        if parts[1:] == ["manifest"]:
            if urn not in self.manifests:
                return httpx.Response(404, json={"diagnostic": "Requested resource does not exist."})
            return httpx.Response(200, json=self.manifests[urn])
        if len(parts) == 4 and parts[1] == "manifest" and parts[3] == "signedcookies":
            derivative_urn = unquote(parts[2])
            if derivative_urn not in self.derivative_files:
                return httpx.Response(404, json={"diagnostic": "Derivative not found"})
            name = derivative_urn.rsplit("/", 1)[-1]
            return httpx.Response(
                200,
                json={
                    "etag": "etag-1",
                    "size": len(self.derivative_files[derivative_urn]),
                    "url": f"https://{CDN_HOST}/{urn}/{name}",
                    "content-type": "application/octet-stream",
                    "expiration": 1700000000000,
                },
                headers=[("set-cookie", part) for part in self.cookie.split(";")] if self.send_cookies else [],
            )
        return httpx.Response(404, text="unknown derivative endpoint")

    def _handle_cdn(self, request: httpx.Request, path: str) -> httpx.Response:
        if request.headers.get("cookie") != self.cookie:
            return httpx.Response(403, text="missing signed cookie")
        name = path.rsplit("/", 1)[-1]
        for derivative_urn, data in self.derivative_files.items():
            if derivative_urn.endswith("/" + name):
                if self.stream_chunk_size or name in self.reset_at:
                    stream = ChunkedStream(data, self.stream_chunk_size or 4, self.reset_at.get(name))
                    return httpx.Response(200, stream=stream)
                return httpx.Response(200, content=data)
        return httpx.Response(404)

    def add_object(self, object_key: str, bucket_key: str = "test-bucket") -> Dict[str, Any]:
        stored = {
            "bucketKey": bucket_key,
            "objectKey": object_key,
            "objectId": f"urn:adsk.objects:os.object:{bucket_key}/{object_key}",
            "size": 1,
        }
        self.buckets.add(bucket_key)
        self.objects.append(stored)
        return stored


def derivative_payload(**overrides: Any) -> Dict[str, Any]:
    """A derivative node that passes the completeness filter unless overridden."""
    payload = {
        "outputType": "svf",
        "progress": "complete",
        "status": "success",
        "name": "house.rvt",
        "children": [
            {"role": "Autodesk.CloudPlatform.PropertyDatabase", "type": "resource", "urn": PROPERTY_DB_URN},
            {"role": "Autodesk.AEC.ModelData", "type": "resource", "urn": MODEL_DATA_URN},
        ],
    }
    payload.update(overrides)
    return payload


def manifest_payload(*derivatives: Dict[str, Any], **overrides: Any) -> Dict[str, Any]:
    payload = {
        "type": "manifest",
        "status": "success",
        "progress": "complete",
        "region": "US",
        "derivatives": list(derivatives),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def fake_aps():
    return FakeAps()


@pytest.fixture
def settings(tmp_path):
    return make_settings(
        {
            "aps": {
                "client_id": "test-client-id",
                "client_secret": "test-client-secret",
                "base_url": BASE_URL,
                "bucket": "test-bucket",
            },
            "results": {"base_dir": str(tmp_path / "results")},
        }
    )


@pytest.fixture
def http_client(fake_aps):
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_aps))


@pytest.fixture
def manager(settings, http_client):
    return build_model_manager(settings, http_client)


@pytest.fixture
def client(manager):
    """Create a test client for the FastAPI app backed by the fake APS."""
    app.dependency_overrides[get_model_manager] = lambda: manager
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
