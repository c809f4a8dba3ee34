from __future__ import annotations

from typing import Optional


class ModelDerivativeError(Exception):
    """Base exception for all model derivative backend errors."""


class ManifestError(ModelDerivativeError):
    """Raised when a manifest is missing or structurally unusable."""


class AllocationError(ModelDerivativeError):
    """Raised when a result directory cannot be named or created."""


class UpstreamError(ModelDerivativeError):
    """Raised when a call to an APS endpoint fails.

    Carries the upstream HTTP status (None for transport failures) and the
    response body for diagnostics.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AuthenticationFailed(UpstreamError):
    """Raised when an access token cannot be obtained."""


class StorageError(UpstreamError):
    """Raised when an OSS bucket or object operation fails."""


class SubmissionFailed(UpstreamError):
    """Raised when a translation job cannot be submitted."""


class FetchFailed(UpstreamError):
    """Raised when a manifest request fails for a reason other than 404."""


class ResolveFailed(UpstreamError):
    """Raised when a derivative download cannot be resolved or fetched."""

    def __init__(
        self,
        message: str,
        derivative_urn: str,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.derivative_urn = derivative_urn
