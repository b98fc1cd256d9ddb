from datetime import datetime, timedelta, timezone

import pytest

from homesignal.artifacts import (
    ArtifactError,
    ArtifactService,
    CreateUploadRequest,
    Purpose,
    PurposeDefinition,
    UploadCapability,
    UploadSlot,
    UploadStatus,
    UploadURLRequest,
    build_object_key,
    default_purpose_registry,
)

NOW = datetime(2026, 5, 18, 12, 0, 0, tzinfo=timezone.utc)


class FakeRepository:
    def __init__(self):
        self.slots = []

    def create_upload_slot(self, slot):
        self.slots.append(slot)


class FailingRepository:
    def create_upload_slot(self, slot):
        raise RuntimeError("database down")


class FakeIssuer:
    def __init__(self, url=""):
        self.url = url
        self.requests = []

    def issue_upload_url(self, request: UploadURLRequest) -> UploadCapability:
        self.requests.append(request)
        return UploadCapability(
            upload_id=request.upload_id,
            method=request.method,
            url=self.url or "https://bucket.example/upload?X-Amz-Signature=fixture",
            expires_at=request.expires_at,
            content_type=request.content_type,
            max_bytes=request.max_size_bytes,
        )


def make_service(repo=None, issuer=None, upload_id="art_123", **kwargs):
    return ArtifactService(
        repository=repo if repo is not None else FakeRepository(),
        issuer=issuer if issuer is not None else FakeIssuer(),
        bucket="homesignal-staging-artifacts",
        id_generator=lambda: upload_id,
        clock=lambda: NOW,
        **kwargs,
    )


def diagnostic_request(**overrides):
    values = dict(
        account_id="acct_123",
        site_id="site_123",
        device_id="dev_123",
        purpose=Purpose.DIAGNOSTIC_BUNDLE,
        content_type="application/json",
    )
    values.update(overrides)
    return CreateUploadRequest(**values)


def test_creates_upload_slot_with_server_generated_object_key():
    repo = FakeRepository()
    issuer = FakeIssuer()
    service = make_service(repo, issuer)

    response = service.create_upload(
        CreateUploadRequest(
            account_id="acct_123",
            site_id="site_123",
            device_id="dev_123",
            command_id="cmd_123",
            purpose=Purpose.BACKUP_ARTIFACT,
            requested_by_subject_type="user",
            requested_by_subject_id="usr_123",
            content_type="application/gzip",
            expected_size_bytes=1024,
            local_artifact_ref="../../backup.tar.gz",
            redaction_profile="backup_v1",
        )
    )

    assert len(repo.slots) == 1
    slot = repo.slots[0]
    assert slot.object_key == (
        "artifacts/accounts/acct_123/sites/site_123/devices/dev_123/"
        "backup_artifact/2026/05/18/art_123"
    )
    assert "backup.tar.gz" not in slot.object_key
    assert ".." not in slot.object_key
    assert slot.status == UploadStatus.PENDING_UPLOAD
    assert slot.expires_at - NOW == timedelta(minutes=15)
    assert response.capability.url != ""
    assert issuer.requests[0].object_key == slot.object_key
    assert issuer.requests[0].method == "PUT"
    assert slot.max_size_bytes == 250 * 1024 * 1024


def test_rejects_unsupported_purpose():
    service = make_service()
    with pytest.raises(ArtifactError, match="unsupported artifact purpose"):
        service.create_upload(diagnostic_request(purpose="topology_snapshot"))


def test_rejects_oversize_expected_size():
    service = make_service()
    with pytest.raises(ArtifactError, match="expected size exceeds"):
        service.create_upload(
            diagnostic_request(
                purpose=Purpose.ERROR_LOG_BUNDLE,
                content_type="text/plain",
                expected_size_bytes=6 * 1024 * 1024,
            )
        )


def test_rejects_unsupported_content_type():
    service = make_service()
    with pytest.raises(ArtifactError, match="unsupported content type"):
        service.create_upload(
            diagnostic_request(
                purpose=Purpose.ERROR_LOG_BUNDLE, content_type="application/octet-stream"
            )
        )


def test_does_not_persist_or_print_signed_url():
    repo = FakeRepository()
    issuer = FakeIssuer(url="https://bucket.example/upload?X-Amz-Signature=supersecret")
    service = make_service(repo, issuer)

    response = service.create_upload(diagnostic_request())

    assert "supersecret" not in str(response)
    assert "supersecret" not in repr(response)
    assert "supersecret" not in str(response.capability)
    assert "supersecret" not in repr(response.capability)
    assert len(repo.slots) == 1
    assert "supersecret" not in repr(repo.slots[0])
    assert response.capability.url.endswith("supersecret")


def test_rejects_path_like_authority_segments():
    service = make_service()
    with pytest.raises(ArtifactError, match="account_id is required"):
        service.create_upload(diagnostic_request(account_id="acct/123"))


def test_rejects_backslash_in_device_segment():
    service = make_service()
    with pytest.raises(ArtifactError, match="device_id is required"):
        service.create_upload(diagnostic_request(device_id="dev\\123"))


def test_rejects_upload_id_with_path_separator():
    service = make_service(upload_id="art/123")
    with pytest.raises(ArtifactError, match="path separators"):
        service.create_upload(diagnostic_request())


def test_rejects_blank_upload_id():
    service = make_service(upload_id="   ")
    with pytest.raises(ArtifactError, match="upload id is required"):
        service.create_upload(diagnostic_request())


def test_rejects_negative_expected_size():
    service = make_service()
    with pytest.raises(ArtifactError, match="cannot be negative"):
        service.create_upload(diagnostic_request(expected_size_bytes=-1))


def test_rejects_invalid_metadata():
    service = make_service()
    with pytest.raises(ArtifactError, match="metadata must be valid JSON"):
        service.create_upload(diagnostic_request(metadata="{not json"))


def test_empty_metadata_becomes_empty_object():
    repo = FakeRepository()
    make_service(repo).create_upload(diagnostic_request())
    assert repo.slots[0].metadata == "{}"


def test_requires_bucket():
    service = ArtifactService(
        repository=FakeRepository(),
        issuer=FakeIssuer(),
        bucket="  ",
        id_generator=lambda: "art_123",
        clock=lambda: NOW,
    )
    with pytest.raises(ArtifactError, match="object bucket is required"):
        service.create_upload(diagnostic_request())


def test_requires_repository_and_issuer():
    with pytest.raises(ArtifactError, match="artifact repository is required"):
        ArtifactService(issuer=FakeIssuer(), bucket="b").create_upload(diagnostic_request())
    with pytest.raises(ArtifactError, match="signed URL issuer is required"):
        ArtifactService(repository=FakeRepository(), bucket="b").create_upload(
            diagnostic_request()
        )


def test_repository_failure_is_wrapped():
    service = make_service(repo=FailingRepository())
    with pytest.raises(ArtifactError, match="create artifact upload slot: database down"):
        service.create_upload(diagnostic_request())


def test_custom_purpose_without_max_size_is_rejected():
    purposes = {
        Purpose.DEBUG_BUNDLE: PurposeDefinition(
            0, timedelta(minutes=5), frozenset({"application/json"})
        )
    }
    service = make_service(purposes=purposes)
    with pytest.raises(ArtifactError, match="max size is required"):
        service.create_upload(diagnostic_request(purpose=Purpose.DEBUG_BUNDLE))


def test_custom_purpose_ttl_is_used():
    purposes = {
        Purpose.DEBUG_BUNDLE: PurposeDefinition(
            100, timedelta(minutes=5), frozenset({"application/json"})
        )
    }
    repo = FakeRepository()
    make_service(repo, purposes=purposes).create_upload(
        diagnostic_request(purpose=Purpose.DEBUG_BUNDLE)
    )
    assert repo.slots[0].expires_at == NOW + timedelta(minutes=5)
    assert repo.slots[0].max_size_bytes == 100


def test_default_registry_limits():
    registry = default_purpose_registry()
    assert registry[Purpose.ERROR_LOG_BUNDLE].max_size_bytes == 5 * 1024 * 1024
    assert registry[Purpose.DIAGNOSTIC_BUNDLE].max_size_bytes == 25 * 1024 * 1024
    assert "application/zip" in registry[Purpose.DEBUG_BUNDLE].allowed_content_types
    assert "application/zip" not in registry[Purpose.ERROR_LOG_BUNDLE].allowed_content_types
    assert "application/x-tar" in registry[Purpose.BACKUP_ARTIFACT].allowed_content_types


def test_capability_string_format():
    capability = UploadCapability(
        upload_id="art_123",
        method="PUT",
        url="https://bucket.example/upload?X-Amz-Signature=fixture",
        expires_at=NOW,
    )
    assert str(capability) == (
        "upload_capability{upload_id:art_123 method:PUT url:<redacted> "
        "expires_at:2026-05-18T12:00:00Z}"
    )


def test_build_object_key_pads_date():
    slot = UploadSlot(
        upload_id="art_9",
        account_id="a",
        site_id="s",
        device_id="d",
        purpose=Purpose.ERROR_LOG_BUNDLE,
        created_at=datetime(2026, 1, 2, tzinfo=timezone.utc),
    )
    assert build_object_key(slot) == (
        "artifacts/accounts/a/sites/s/devices/d/error_log_bundle/2026/01/02/art_9"
    )