"""Alert lifecycle: candidate intake, deduplication, acknowledgement, snoozing and resolution."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Protocol


class AlertingError(Exception):
    """Raised when an alerting operation cannot be completed."""


class NotFoundError(AlertingError):
    """Raised by repositories when an alert record does not exist."""

    def __init__(self, message: str = "alert record not found") -> None:
        super().__init__(message)


class Family(str, Enum):
    DEVICE_DISCONNECTED = "device_disconnected"
    BACKUP_FAILED = "backup_failed"
    BACKUP_OVERDUE = "backup_overdue"
    APP_UPDATE_ATTENTION = "app_update_attention"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class Status(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class EventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    RESOLVED = "resolved"
    ACKNOWLEDGED = "acknowledged"
    SNOOZED = "snoozed"


_FAMILIES = frozenset(Family)
_SEVERITIES = frozenset(Severity)
_STATUSES = frozenset(Status)
_EVENT_TYPES = frozenset(EventType)


@dataclass
class Candidate:
    candidate_id: str = ""
    event_type: str = ""
    account_id: str = ""
    site_id: str = ""
    device_id: str = ""
    source: str = ""
    previous_state: str = ""
    new_state: str = ""
    metadata: str = ""
    occurred_at: Optional[datetime] = None
    received_at: Optional[datetime] = None


@dataclass
class Alert:
    alert_id: str = ""
    alert_key: str = ""
    account_id: str = ""
    site_id: str = ""
    device_id: str = ""
    family: Optional[Family] = None
    severity: Optional[Severity] = None
    status: Status = Status.ACTIVE
    title: str = ""
    detail: str = ""
    reason_code: str = ""
    first_candidate_id: str = ""
    last_candidate_id: str = ""
    occurrence_count: int = 0
    acknowledged_by_user_id: str = ""
    acknowledged_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class AlertEvent:
    alert_id: str
    event_type: EventType
    actor_subject_type: str
    actor_subject_id: str
    metadata: str
    occurred_at: datetime
    candidate_id: str = ""


@dataclass
class CandidateVerification:
    alert_key: str = ""
    healthy: bool = False
    family: Optional[Family] = None
    severity: Optional[Severity] = None
    title: str = ""
    detail: str = ""
    reason_code: str = ""
    metadata: str = ""


@dataclass
class CandidateResult:
    duplicate: bool = False
    ignored: bool = False
    resolved: bool = False
    alert: Optional[Alert] = None


@dataclass
class AlertActionRequest:
    alert_id: str = ""
    actor_subject_id: str = ""
    actor_type: str = ""
    reason_code: str = ""
    snoozed_until: Optional[datetime] = None


class Repository(Protocol):
    def try_record_candidate(self, candidate: Candidate) -> bool: ...

    def get_active_alert_by_key(self, alert_key: str) -> Alert: ...

    def get_alert(self, alert_id: str) -> Alert: ...

    def create_alert(self, alert: Alert) -> None: ...

    def save_alert(self, alert: Alert) -> None: ...

    def record_alert_event(self, event: AlertEvent) -> None: ...


class StateVerifier(Protocol):
    def verify_candidate(self, candidate: Candidate) -> CandidateVerification: ...


def _wrap(message: str, exc: Exception) -> AlertingError:
    cls = NotFoundError if isinstance(exc, NotFoundError) else AlertingError
    return cls(f"{message}: {exc}")


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _text(value: object) -> str:
    return value.value if isinstance(value, Enum) else str(value if value is not None else "")


def _normalize_json(value: Optional[str]) -> str:
    return value if value else "{}"


def _valid_json(value: str) -> bool:
    try:
        json.loads(value)
    except (TypeError, ValueError):
        return False
    return True


def _dump(value: dict) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _reason_metadata(reason_code: str) -> str:
    return _dump({"reason_code": reason_code.strip()})


def _actor(value: str) -> str:
    return value.strip() or "system"


def _normalize_candidate(candidate: Candidate, now: datetime) -> Candidate:
    return dataclasses.replace(
        candidate,
        candidate_id=candidate.candidate_id.strip(),
        event_type=candidate.event_type.strip(),
        account_id=candidate.account_id.strip(),
        site_id=candidate.site_id.strip(),
        device_id=candidate.device_id.strip(),
        source=candidate.source.strip(),
        previous_state=_normalize_json(candidate.previous_state),
        new_state=_normalize_json(candidate.new_state),
        metadata=_normalize_json(candidate.metadata),
        received_at=candidate.received_at if candidate.received_at is not None else now,
    )


def _validate_candidate(candidate: Candidate) -> None:
    if not candidate.candidate_id or not candidate.event_type:
        raise AlertingError("candidate_id and event_type are required")
    if not candidate.account_id or not candidate.site_id:
        raise AlertingError("account_id and site_id are required")
    if not candidate.source:
        raise AlertingError("candidate source is required")
    if candidate.occurred_at is None:
        raise AlertingError("occurred_at is required")
    if not all(
        _valid_json(v) for v in (candidate.previous_state, candidate.new_state, candidate.metadata)
    ):
        raise AlertingError("candidate JSON fields must be valid")


def _validate_verification(verification: CandidateVerification) -> None:
    if not verification.alert_key.strip():
        raise AlertingError("alert_key is required")
    if verification.healthy:
        return
    if (
        not verification.family
        or not verification.severity
        or not verification.title.strip()
        or not verification.detail.strip()
    ):
        raise AlertingError(
            "unhealthy alert verification requires family, severity, title, and detail"
        )
    if not _valid_json(_normalize_json(verification.metadata)):
        raise AlertingError("verification metadata must be valid JSON")


def _validate_alert(alert: Alert) -> None:
    if not alert.alert_id or not alert.alert_key:
        raise AlertingError("alert_id and alert_key are required")
    if not alert.account_id or not alert.site_id:
        raise AlertingError("account_id and site_id are required")
    if alert.family not in _FAMILIES:
        raise AlertingError(f"unsupported alert family {_text(alert.family)!r}")
    if alert.severity not in _SEVERITIES:
        raise AlertingError(f"unsupported alert severity {_text(alert.severity)!r}")
    if alert.status not in _STATUSES:
        raise AlertingError(f"unsupported alert status {_text(alert.status)!r}")
    if not alert.title or not alert.detail or not alert.reason_code:
        raise AlertingError("title, detail, and reason_code are required")
    if alert.occurrence_count <= 0:
        raise AlertingError("occurrence_count must be positive")


def _validate_alert_event(event: AlertEvent) -> None:
    if not event.alert_id:
        raise AlertingError("alert_id is required")
    if event.event_type not in _EVENT_TYPES:
        raise AlertingError(f"unsupported alert event type {_text(event.event_type)!r}")
    if not event.actor_subject_type or not event.actor_subject_id:
        raise AlertingError("alert event actor is required")
    if not _valid_json(event.metadata):
        raise AlertingError("alert event metadata must be valid JSON")


@dataclass
class AlertService:
    """Turns verified alert candidates into alerts and records their lifecycle."""

    repository: Optional[Repository] = None
    verifier: Optional[StateVerifier] = None
    id_generator: Optional[Callable[[], str]] = None
    clock: Optional[Callable[[], datetime]] = None

    def intake_candidate(self, candidate: Candidate) -> CandidateResult:
        """Deduplicate, verify and apply one alert candidate."""
        if self.repository is None:
            raise AlertingError("alert repository is required")
        if self.verifier is None:
            raise AlertingError("alert candidate verifier is required")
        candidate = _normalize_candidate(candidate, self._now())
        _validate_candidate(candidate)
        try:
            recorded = self.repository.try_record_candidate(candidate)
        except Exception as exc:
            raise _wrap("record alert candidate", exc) from exc
        if not recorded:
            return CandidateResult(duplicate=True, ignored=True)
        try:
            verification = self.verifier.verify_candidate(candidate)
        except Exception as exc:
            raise _wrap("verify alert candidate", exc) from exc
        _validate_verification(verification)

        active: Optional[Alert]
        try:
            active = self.repository.get_active_alert_by_key(verification.alert_key)
        except NotFoundError:
            active = None
        except Exception as exc:
            raise _wrap("load active alert", exc) from exc

        if verification.healthy:
            if active is None:
                return CandidateResult(ignored=True)
            resolved = self._resolve(
                active, candidate.candidate_id, "candidate_recovered", "system", "system"
            )
            return CandidateResult(resolved=True, alert=resolved)

        if active is None:
            return CandidateResult(alert=self._create_alert(candidate, verification))

        alert = dataclasses.replace(
            active,
            severity=verification.severity,
            title=verification.title,
            detail=verification.detail,
            reason_code=verification.reason_code,
            last_candidate_id=candidate.candidate_id,
            occurrence_count=active.occurrence_count + 1,
            updated_at=self._now(),
        )
        try:
            self.repository.save_alert(alert)
        except Exception as exc:
            raise _wrap("update alert", exc) from exc
        self._record_event(
            alert, candidate.candidate_id, EventType.UPDATED, "system", "system", verification.metadata
        )
        return CandidateResult(alert=alert)

    def acknowledge_alert(self, request: AlertActionRequest) -> Alert:
        """Mark an alert as acknowledged by the requesting actor."""
        alert = self._load_alert(request.alert_id)
        now = self._now()
        alert = dataclasses.replace(
            alert,
            acknowledged_at=now,
            acknowledged_by_user_id=request.actor_subject_id.strip(),
            updated_at=now,
        )
        try:
            self.repository.save_alert(alert)
        except Exception as exc:
            raise _wrap("acknowledge alert", exc) from exc
        self._record_event(
            alert,
            "",
            EventType.ACKNOWLEDGED,
            request.actor_type,
            request.actor_subject_id,
            _reason_metadata(request.reason_code),
        )
        return alert

    def snooze_alert(self, request: AlertActionRequest) -> Alert:
        """Snooze an alert until a time in the future."""
        alert = self._load_alert(request.alert_id)
        if request.snoozed_until is None or not _utc(request.snoozed_until) > self._now():
            raise AlertingError("snoozed_until must be in the future")
        snoozed_until = _utc(request.snoozed_until)
        alert = dataclasses.replace(alert, snoozed_until=snoozed_until, updated_at=self._now())
        try:
            self.repository.save_alert(alert)
        except Exception as exc:
            raise _wrap("snooze alert", exc) from exc
        metadata = _dump(
            {
                "reason_code": request.reason_code.strip(),
                "snoozed_until": snoozed_until.strftime("%Y-%m-%dT%H:%M:%SZ"),
            }
        )
        self._record_event(
            alert, "", EventType.SNOOZED, request.actor_type, request.actor_subject_id, metadata
        )
        return alert

    def resolve_alert(self, request: AlertActionRequest) -> Alert:
        """Resolve an alert on behalf of the requesting actor."""
        alert = self._load_alert(request.alert_id)
        return self._resolve(
            alert,
            "",
            request.reason_code.strip(),
            _actor(request.actor_type),
            _actor(request.actor_subject_id),
        )

    def _create_alert(self, candidate: Candidate, verification: CandidateVerification) -> Alert:
        alert_id = self.id_generator().strip() if self.id_generator is not None else ""
        if not alert_id:
            raise AlertingError("alert id is required")
        now = self._now()
        alert = Alert(
            alert_id=alert_id,
            alert_key=verification.alert_key,
            account_id=candidate.account_id,
            site_id=candidate.site_id,
            device_id=candidate.device_id,
            family=verification.family,
            severity=verification.severity,
            status=Status.ACTIVE,
            title=verification.title,
            detail=verification.detail,
            reason_code=verification.reason_code,
            first_candidate_id=candidate.candidate_id,
            last_candidate_id=candidate.candidate_id,
            occurrence_count=1,
            created_at=now,
            updated_at=now,
        )
        _validate_alert(alert)
        try:
            self.repository.create_alert(alert)
        except Exception as exc:
            raise _wrap("create alert", exc) from exc
        self._record_event(
            alert, candidate.candidate_id, EventType.CREATED, "system", "system", verification.metadata
        )
        return alert

    def _resolve(
        self,
        alert: Alert,
        candidate_id: str,
        reason_code: str,
        actor_subject_type: str,
        actor_subject_id: str,
    ) -> Alert:
        if alert.status == Status.RESOLVED:
            return alert
        now = self._now()
        candidate_id = candidate_id.strip()
        alert = dataclasses.replace(
            alert,
            status=Status.RESOLVED,
            resolved_at=now,
            updated_at=now,
            last_candidate_id=candidate_id or alert.last_candidate_id,
            reason_code=reason_code.strip() or alert.reason_code,
        )
        try:
            self.repository.save_alert(alert)
        except Exception as exc:
            raise _wrap("resolve alert", exc) from exc
        self._record_event(
            alert,
            candidate_id,
            EventType.RESOLVED,
            actor_subject_type,
            actor_subject_id,
            _reason_metadata(reason_code),
        )
        return alert

    def _load_alert(self, alert_id: str) -> Alert:
        if self.repository is None:
            raise AlertingError("alert repository is required")
        alert_id = alert_id.strip()
        if not alert_id:
            raise AlertingError("alert_id is required")
        try:
            return self.repository.get_alert(alert_id)
        except Exception as exc:
            raise _wrap("load alert", exc) from exc

    def _record_event(
        self,
        alert: Alert,
        candidate_id: str,
        event_type: EventType,
        actor_subject_type: str,
        actor_subject_id: str,
        metadata: str,
    ) -> None:
        event = AlertEvent(
            alert_id=alert.alert_id,
            candidate_id=candidate_id.strip(),
            event_type=event_type,
            actor_subject_type=_actor(actor_subject_type),
            actor_subject_id=_actor(actor_subject_id),
            metadata=_normalize_json(metadata),
            occurred_at=self._now(),
        )
        _validate_alert_event(event)
        try:
            self.repository.record_alert_event(event)
        except Exception as exc:
            raise _wrap("record alert event", exc) from exc

    def _now(self) -> datetime:
        if self.clock is not None:
            return _utc(self.clock())
        return datetime.now(timezone.utc)