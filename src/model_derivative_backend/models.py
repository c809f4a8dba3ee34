from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApsModel(BaseModel):
    """Base for payloads exchanged with APS (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        protected_namespaces=(),
    )


class ManifestStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "inprogress"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


def _message_text(entry: Any) -> str:
    if isinstance(entry, dict):
        text = entry.get("message") or entry.get("code") or ""
        if isinstance(text, list):
            return " ".join(str(part) for part in text)
        return str(text)
    return str(entry)


class _WithMessages(ApsModel):
    messages: Optional[List[str]] = None

    @field_validator("messages", mode="before")
    @classmethod
    def flatten_messages(cls, value: Any) -> Any:
        # Upstream sends either plain strings or {type, code, message} objects.
        if value is None:
            return None
        return [_message_text(entry) for entry in value]


class DerivativeChild(_WithMessages):
    guid: Optional[str] = None
    role: Optional[str] = None
    type: Optional[str] = None
    urn: Optional[str] = None
    mime: Optional[str] = None
    name: Optional[str] = None


class Derivative(_WithMessages):
    output_type: Optional[str] = None
    status: Optional[str] = None
    progress: Optional[str] = None
    name: Optional[str] = None
    has_thumbnail: Optional[str] = None
    children: Optional[List[DerivativeChild]] = None


class Manifest(ApsModel):
    status: ManifestStatus
    progress: Optional[str] = None
    urn: Optional[str] = None
    type: Optional[str] = None
    region: Optional[str] = None
    has_thumbnail: Optional[str] = None
    derivatives: Optional[List[Derivative]] = None


class ParsedManifestSummary(ApsModel):
    cad_file_name: str = ""
    property_db_urn: str = ""
    model_data_urn: str = ""


class StoredObject(ApsModel):
    bucket_key: str
    object_key: str
    object_id: str
    size: Optional[int] = None
    sha1: Optional[str] = None
    location: Optional[str] = None


class TranslationJob(ApsModel):
    result: Optional[str] = None
    urn: Optional[str] = None
    accepted_jobs: Optional[Dict[str, Any]] = None


class SignedDownload(BaseModel):
    url: str
    session_credential: str
    etag: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = None
    expiration: Optional[int] = None


class AccessToken(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class ModelSummary(BaseModel):
    name: str
    urn: str


class ModelStatus(BaseModel):
    status: str
    progress: Optional[str] = None
    messages: Optional[List[str]] = None


class PropertiesDownload(ApsModel):
    cad_file_name: str
    result_dir: str
    property_db_path: str = ""
    model_data_path: str = ""


class TranslationOutputFormat(BaseModel):
    type: str
    views: List[str] = Field(default_factory=list)
