"""Artifact upload slots: server-chosen object keys and short-lived signed upload URLs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Mapping, Optional, Protocol, Union

DEFAULT_UPLOAD_METHOD = "PUT"

_MIB = 1024 * 1024
_DEFAULT_TTL = timedelta(minutes=15)
_PATH_SEPARATORS = ("/", "\\")


class ArtifactError(Exception):
    """Raised when an artifact upload cannot be prepared."""


class Purpose(str, Enum):
    ERROR_LOG_BUNDLE = "error_log_bundle"
    DIAGNOSTIC_BUNDLE = "diagnostic_bundle"
    DEBUG_BUNDLE = "debug_bundle"
    BACKUP_ARTIFACT = "backup_artifact"


class UploadStatus(str, Enum):
    PENDING_UPLOAD = "pending_upload"
    UPLOADED = "uploaded"
    VALIDATED = "validated"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELED = "canceled"


PurposeLike = Union[Purpose, str]


@dataclass(frozen=True)
class PurposeDefinition:
    max_size_bytes: int
    default_url_ttl: timedelta
    allowed_content_types: frozenset[str] = frozenset()


@dataclass
class UploadSlot:
    upload_id: str = ""
    account_id: str = ""
    site_id: str = ""
    device_id: str = ""
    command_id: str = ""
    purpose: Optional[PurposeLike] = None
    status: UploadStatus = UploadStatus.PENDING_UPLOAD
    requested_by_subject_type: str = ""
    requested_by_subject_id: str = ""
    object_bucket: str = ""
    object_key: str = ""
    content_type: str = ""
    max_size_bytes: int = 0
    expected_size_bytes: Optional[int] = None
    checksum_sha256: str = ""
    local_artifact_ref: str = ""
    redaction_profile: str = ""
    metadata: str = "{}"
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CreateUploadRequest:
    account_id: str = ""
    site_id: str = ""
    device_id: str = ""
    command_id: str = ""
    purpose: Optional[PurposeLike] = None
    requested_by_subject_type: str = ""
    requested_by_subject_id: str = ""
    content_type: str = ""
    expected_size_bytes: Optional[int] = None
    checksum_sha256: str = ""
    local_artifact_ref: str = ""
    redaction_profile: str = ""
    metadata: str = ""


@dataclass
class UploadURLRequest:
    upload_id: str
    object_bucket: str
    object_key: str
    method: str
    content_type: str
    max_size_bytes: int
    expires_at: datetime
    checksum_sha256: str = ""


def _rfc3339(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return _utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(repr=False)
class UploadCapability:
    """A signed upload URL; its text form never shows the URL."""

    upload_id: str = ""
    method: str = ""
    url: str = ""
    expires_at: Optional[datetime] = None
    content_type: str = ""
    max_bytes: int = 0

    def __str__(self) -> str:
        return (
            f"upload_capability{{upload_id:{self.upload_id} method:{self.method} "
            f"url:<redacted> expires_at:{_rfc3339(self.expires_at)}}}"
        )

    __repr__ = __str__


@dataclass(repr=False)
class CreateUploadResponse:
    """The stored slot together with the capability to upload into it."""

    upload: UploadSlot
    capability: UploadCapability

    def __str__(self) -> str:
        return (
            f"artifact_upload{{upload_id:{self.upload.upload_id} "
            f"object_key:{self.upload.object_key} signed_url:<redacted>}}"
        )

    __repr__ = __str__


class Repository(Protocol):
    def create_upload_slot(self, slot: UploadSlot) -> None: ...


class SignedURLIssuer(Protocol):
    def issue_upload_url(self, request: UploadURLRequest) -> UploadCapability: ...


def default_purpose_registry() -> dict[Purpose, PurposeDefinition]:
    """Return the size limits, URL lifetimes and content types for each purpose."""
    text_types = frozenset(
        {
            "application/json",
            "application/x-ndjson",
            "text/plain",
            "application/gzip",
            "application/zstd",
        }
    )
    bundle_types = text_types | {"application/zip"}
    return {
        Purpose.ERROR_LOG_BUNDLE: PurposeDefinition(5 * _MIB, _DEFAULT_TTL, text_types),
        Purpose.DIAGNOSTIC_BUNDLE: PurposeDefinition(25 * _MIB, _DEFAULT_TTL, bundle_types),
        Purpose.DEBUG_BUNDLE: PurposeDefinition(25 * _MIB, _DEFAULT_TTL, bundle_types),
        Purpose.BACKUP_ARTIFACT: PurposeDefinition(
            250 * _MIB,
            _DEFAULT_TTL,
            frozenset(
                {
                    "application/gzip",
                    "application/octet-stream",
                    "application/x-tar",
                    "application/zip",
                }
            ),
        ),
    }


def _text(value: object) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return "" if value is None else str(value)


def _quote(value: object) -> str:
    return json.dumps(_text(value))


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _has_separator(value: str) -> bool:
    return any(sep in value for sep in _PATH_SEPARATORS)


def _clean_segment(value: str) -> str:
    value = (value or "").strip()
    return "" if _has_separator(value) else value


def _normalize_json(value: Optional[str]) -> str:
    return value if value else "{}"


def _valid_json(value: str) -> bool:
    try:
        json.loads(value)
    except (TypeError, ValueError):
        return False
    return True


def build_object_key(slot: UploadSlot) -> str:
    """Build the storage key for a slot from its authority segments and creation date."""
    created = _utc(slot.created_at) if slot.created_at is not None else datetime.now(timezone.utc)
    return (
        f"artifacts/accounts/{slot.account_id}/sites/{slot.site_id}"
        f"/devices/{slot.device_id}/{_text(slot.purpose)}"
        f"/{created.year:04d}/{created.month:02d}/{created.day:02d}/{slot.upload_id}"
    )


def _validate_upload_slot(slot: UploadSlot) -> None:
    if not slot.account_id:
        raise ArtifactError("account_id is required")
    if not slot.site_id:
        raise ArtifactError("site_id is required")
    if not slot.device_id:
        raise ArtifactError("device_id is required")
    if not slot.content_type:
        raise ArtifactError("content_type is required")
    if slot.expires_at is None or slot.created_at is None or not slot.expires_at > slot.created_at:
        raise ArtifactError("expires_at must be after created_at")


@dataclass
class ArtifactService:
    """Reserves upload slots and obtains signed URLs for them."""

    repository: Optional[Repository] = None
    issuer: Optional[SignedURLIssuer] = None
    purposes: Optional[Mapping[PurposeLike, PurposeDefinition]] = None
    bucket: str = ""
    id_generator: Optional[Callable[[], str]] = None
    clock: Optional[Callable[[], datetime]] = field(default=None)

    def create_upload(self, request: CreateUploadRequest) -> CreateUploadResponse:
        """Store a pending upload slot and return it with a signed upload capability."""
        if self.repository is None:
            raise ArtifactError("artifact repository is required")
        if self.issuer is None:
            raise ArtifactError("signed URL issuer is required")
        bucket = (self.bucket or "").strip()
        if not bucket:
            raise ArtifactError("object bucket is required")
        definition = self._definition_for(request.purpose)
        now = self._now()
        upload_id = self._new_upload_id()

        content_type = (request.content_type or "").strip()
        if content_type not in definition.allowed_content_types:
            raise ArtifactError(
                f"unsupported content type {_quote(content_type)} "
                f"for purpose {_quote(request.purpose)}"
            )
        expected = request.expected_size_bytes
        if expected is not None:
            if expected < 0:
                raise ArtifactError("expected size cannot be negative")
            if expected > definition.max_size_bytes:
                raise ArtifactError("expected size exceeds purpose max")
        metadata = _normalize_json(request.metadata)
        if not _valid_json(metadata):
            raise ArtifactError("metadata must be valid JSON")

        slot = UploadSlot(
            upload_id=upload_id,
            account_id=_clean_segment(request.account_id),
            site_id=_clean_segment(request.site_id),
            device_id=_clean_segment(request.device_id),
            command_id=(request.command_id or "").strip(),
            purpose=request.purpose,
            status=UploadStatus.PENDING_UPLOAD,
            requested_by_subject_type=(request.requested_by_subject_type or "").strip(),
            requested_by_subject_id=(request.requested_by_subject_id or "").strip(),
            object_bucket=bucket,
            content_type=content_type,
            max_size_bytes=definition.max_size_bytes,
            expected_size_bytes=expected,
            checksum_sha256=(request.checksum_sha256 or "").strip(),
            local_artifact_ref=(request.local_artifact_ref or "").strip(),
            redaction_profile=(request.redaction_profile or "").strip(),
            metadata=metadata,
            expires_at=now + definition.default_url_ttl,
            created_at=now,
            updated_at=now,
        )
        _validate_upload_slot(slot)
        slot.object_key = build_object_key(slot)

        try:
            self.repository.create_upload_slot(slot)
        except Exception as exc:
            raise ArtifactError(f"create artifact upload slot: {exc}") from exc
        try:
            capability = self.issuer.issue_upload_url(
                UploadURLRequest(
                    upload_id=slot.upload_id,
                    object_bucket=slot.object_bucket,
                    object_key=slot.object_key,
                    method=DEFAULT_UPLOAD_METHOD,
                    content_type=slot.content_type,
                    max_size_bytes=slot.max_size_bytes,
                    expires_at=slot.expires_at,
                    checksum_sha256=slot.checksum_sha256,
                )
            )
        except Exception as exc:
            raise ArtifactError(f"issue signed upload URL: {exc}") from exc
        return CreateUploadResponse(upload=slot, capability=capability)

    def _definition_for(self, purpose: Optional[PurposeLike]) -> PurposeDefinition:
        purposes = self.purposes if self.purposes is not None else default_purpose_registry()
        definition = purposes.get(purpose) if purpose is not None else None
        if definition is None:
            raise ArtifactError(f"unsupported artifact purpose {_quote(purpose)}")
        if definition.max_size_bytes <= 0:
            raise ArtifactError(f"max size is required for purpose {_quote(purpose)}")
        if definition.default_url_ttl <= timedelta(0):
            raise ArtifactError(f"default URL TTL is required for purpose {_quote(purpose)}")
        if not definition.allowed_content_types:
            raise ArtifactError(
                f"content type registry is required for purpose {_quote(purpose)}"
            )
        return definition

    def _new_upload_id(self) -> str:
        if self.id_generator is None:
            raise ArtifactError("upload id generator is required")
        upload_id = (self.id_generator() or "").strip()
        if not upload_id:
            raise ArtifactError("upload id is required")
        if _has_separator(upload_id):
            raise ArtifactError("upload id contains path separators")
        return upload_id

    def _now(self) -> datetime:
        if self.clock is not None:
            return _utc(self.clock())
        return datetime.now(timezone.utc)