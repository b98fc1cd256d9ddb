"""Alert recipients: who receives alert e-mails and for which alert families."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parseaddr
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, Union

from homesignal.alerting import Alert, AlertingError, Family, NotFoundError


class RecipientStatus(str, Enum):
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    DISABLED = "disabled"
    DELETED = "deleted"


class SubscriptionFamily(str, Enum):
    DEVICE_DISCONNECTED = "device_disconnected"
    BACKUP_FAILED_OR_OVERDUE = "backup_failed_or_overdue"
    APP_UPDATE_ATTENTION = "app_update_attention"


_DEFAULT_FAMILIES = (
    SubscriptionFamily.DEVICE_DISCONNECTED,
    SubscriptionFamily.BACKUP_FAILED_OR_OVERDUE,
    SubscriptionFamily.APP_UPDATE_ATTENTION,
)

_UPDATABLE_STATUSES = frozenset(
    {
        RecipientStatus.PENDING_VERIFICATION,
        RecipientStatus.VERIFIED,
        RecipientStatus.DISABLED,
    }
)

_ALERT_TO_SUBSCRIPTION = {
    Family.DEVICE_DISCONNECTED: SubscriptionFamily.DEVICE_DISCONNECTED,
    Family.BACKUP_FAILED: SubscriptionFamily.BACKUP_FAILED_OR_OVERDUE,
    Family.BACKUP_OVERDUE: SubscriptionFamily.BACKUP_FAILED_OR_OVERDUE,
    Family.APP_UPDATE_ATTENTION: SubscriptionFamily.APP_UPDATE_ATTENTION,
}

_ADDRESS = re.compile(r"^[^\s@<>()\[\],;:\"]+@[^\s@<>()\[\],;:\"]+$")

FamilyLike = Union[SubscriptionFamily, str]


@dataclass
class AlertSubscription:
    family: SubscriptionFamily
    enabled: bool = True


@dataclass
class AlertRecipient:
    alert_recipient_id: str = ""
    account_id: str = ""
    site_id: str = ""
    email: str = ""
    email_normalized: str = ""
    display_label: str = ""
    channel: str = "email"
    status: RecipientStatus = RecipientStatus.PENDING_VERIFICATION
    created_by_user_id: str = ""
    verified_at: Optional[datetime] = None
    disabled_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    subscriptions: list[AlertSubscription] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CreateRecipientRequest:
    account_id: str = ""
    site_id: str = ""
    email: str = ""
    display_label: str = ""
    actor_user_id: str = ""
    actor_email: str = ""
    actor_email_verified: bool = False
    subscribed_families: list[FamilyLike] = field(default_factory=list)


@dataclass
class UpdateRecipientRequest:
    alert_recipient_id: str = ""
    account_id: str = ""
    site_id: str = ""
    display_label: str = ""
    status: Optional[Union[RecipientStatus, str]] = None
    actor_user_id: str = ""
    subscribed_families: list[FamilyLike] = field(default_factory=list)


@dataclass
class DeleteRecipientRequest:
    alert_recipient_id: str = ""
    account_id: str = ""
    site_id: str = ""
    actor_user_id: str = ""


class RecipientRepository(Protocol):
    def save_recipient(self, recipient: AlertRecipient) -> None: ...

    def get_recipient(self, recipient_id: str) -> AlertRecipient: ...

    def list_recipients_for_account(self, account_id: str) -> list[AlertRecipient]: ...


class RecipientAuthorization(Protocol):
    def can_manage_alert_recipients(
        self, actor_user_id: str, account_id: str, site_id: str
    ) -> bool: ...


def _text(value: object) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return "" if value is None else str(value)


def _wrap(message: str, exc: Exception) -> AlertingError:
    cls = NotFoundError if isinstance(exc, NotFoundError) else AlertingError
    return cls(f"{message}: {exc}")


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_email(value: str) -> tuple[str, str]:
    """Parse an e-mail address; return it as given and in lower case."""
    value = (value or "").strip()
    _, address = parseaddr(value)
    address = address.strip()
    if not value or not _ADDRESS.match(address):
        raise AlertingError("recipient email must be valid")
    normalized = address.lower()
    if not normalized:
        raise AlertingError("recipient email is required")
    return address, normalized


def normalize_subscriptions(families: Optional[Iterable[FamilyLike]]) -> list[AlertSubscription]:
    """Turn family names into enabled subscriptions, dropping unknowns and repeats."""
    families = list(families or ())
    if not families:
        families = list(_DEFAULT_FAMILIES)
    seen: set[SubscriptionFamily] = set()
    subscriptions = []
    for raw in families:
        try:
            family = SubscriptionFamily(_text(raw).strip())
        except ValueError:
            continue
        if family in seen:
            continue
        seen.add(family)
        subscriptions.append(AlertSubscription(family=family, enabled=True))
    return subscriptions


def _validate_recipient(recipient: AlertRecipient) -> None:
    if not recipient.alert_recipient_id or not recipient.account_id:
        raise AlertingError("alert_recipient_id and account_id are required")
    if recipient.channel != "email":
        raise AlertingError(f"unsupported alert recipient channel {recipient.channel!r}")
    if not recipient.email or not recipient.email_normalized:
        raise AlertingError("recipient email is required")
    if recipient.status not in set(RecipientStatus):
        raise AlertingError(f"unsupported recipient status {_text(recipient.status)!r}")
    if not recipient.subscriptions:
        raise AlertingError("at least one alert subscription is required")
    for subscription in recipient.subscriptions:
        if subscription.family not in set(SubscriptionFamily):
            raise AlertingError(
                f"unsupported subscription family {_text(subscription.family)!r}"
            )


def _subscription_enabled(
    subscriptions: Iterable[AlertSubscription], family: SubscriptionFamily
) -> bool:
    return any(s.family == family and s.enabled for s in subscriptions)


@dataclass
class RecipientService:
    """Manages alert recipients and selects who should receive an alert."""

    repository: Optional[RecipientRepository] = None
    authorization: Optional[RecipientAuthorization] = None
    id_generator: Optional[Callable[[], str]] = None
    clock: Optional[Callable[[], datetime]] = None

    def create_recipient(self, request: CreateRecipientRequest) -> AlertRecipient:
        """Create a recipient, verified at once when it is the actor's own verified e-mail."""
        repository = self._repository()
        self._authorize(request.actor_user_id, request.account_id, request.site_id)
        now = self._now()
        recipient_id = self._new_recipient_id()
        email, normalized = normalize_email(request.email)
        status = RecipientStatus.PENDING_VERIFICATION
        verified_at = None
        if request.actor_email_verified:
            try:
                _, actor_email = normalize_email(request.actor_email)
            except AlertingError:
                actor_email = None
            if actor_email == normalized:
                status = RecipientStatus.VERIFIED
                verified_at = now
        recipient = AlertRecipient(
            alert_recipient_id=recipient_id,
            account_id=request.account_id.strip(),
            site_id=request.site_id.strip(),
            email=email,
            email_normalized=normalized,
            display_label=request.display_label.strip(),
            channel="email",
            status=status,
            created_by_user_id=request.actor_user_id.strip(),
            verified_at=verified_at,
            subscriptions=normalize_subscriptions(request.subscribed_families),
            created_at=now,
            updated_at=now,
        )
        _validate_recipient(recipient)
        try:
            repository.save_recipient(recipient)
        except Exception as exc:
            raise _wrap("save alert recipient", exc) from exc
        return recipient

    def update_recipient(self, request: UpdateRecipientRequest) -> AlertRecipient:
        """Change a recipient's label, status or subscriptions."""
        repository = self._repository()
        existing = self._load(request.alert_recipient_id)
        self._authorize(request.actor_user_id, existing.account_id, existing.site_id)
        account_id = request.account_id.strip()
        if account_id and account_id != existing.account_id:
            raise AlertingError("account_id cannot be changed")
        site_id = request.site_id.strip()
        if site_id and site_id != existing.site_id:
            raise AlertingError("site_id cannot be changed")

        changes: dict = {}
        label = request.display_label.strip()
        if label:
            changes["display_label"] = label
        if request.status:
            try:
                status = RecipientStatus(_text(request.status))
            except ValueError:
                status = None
            if status not in _UPDATABLE_STATUSES:
                raise AlertingError(f"unsupported recipient status {_text(request.status)!r}")
            changes["status"] = status
        if request.subscribed_families:
            changes["subscriptions"] = normalize_subscriptions(request.subscribed_families)
        changes["updated_at"] = self._now()
        updated = dataclasses.replace(existing, **changes)
        _validate_recipient(updated)
        try:
            repository.save_recipient(updated)
        except Exception as exc:
            raise _wrap("save alert recipient", exc) from exc
        return updated

    def delete_recipient(self, request: DeleteRecipientRequest) -> AlertRecipient:
        """Mark a recipient as deleted."""
        repository = self._repository()
        existing = self._load(request.alert_recipient_id)
        self._authorize(request.actor_user_id, existing.account_id, existing.site_id)
        now = self._now()
        deleted = dataclasses.replace(
            existing, status=RecipientStatus.DELETED, deleted_at=now, updated_at=now
        )
        try:
            repository.save_recipient(deleted)
        except Exception as exc:
            raise _wrap("delete alert recipient", exc) from exc
        return deleted

    def eligible_recipients(self, alert: Alert) -> list[AlertRecipient]:
        """Return the verified e-mail recipients subscribed to this alert's family and site."""
        repository = self._repository()
        family = _ALERT_TO_SUBSCRIPTION.get(alert.family) if alert.family is not None else None
        if family is None:
            return []
        try:
            recipients = repository.list_recipients_for_account(alert.account_id)
        except Exception as exc:
            raise _wrap("list alert recipients", exc) from exc
        return [
            recipient
            for recipient in recipients or ()
            if recipient.status == RecipientStatus.VERIFIED
            and recipient.channel == "email"
            and (not recipient.site_id or recipient.site_id == alert.site_id)
            and _subscription_enabled(recipient.subscriptions, family)
        ]

    def _repository(self) -> RecipientRepository:
        if self.repository is None:
            raise AlertingError("alert recipient repository is required")
        return self.repository

    def _load(self, recipient_id: str) -> AlertRecipient:
        try:
            return self._repository().get_recipient(recipient_id.strip())
        except Exception as exc:
            raise _wrap("load alert recipient", exc) from exc

    def _authorize(self, actor_user_id: str, account_id: str, site_id: str) -> None:
        actor_user_id = actor_user_id.strip()
        account_id = account_id.strip()
        site_id = site_id.strip()
        if not actor_user_id or not account_id:
            raise AlertingError("actor_user_id and account_id are required")
        if self.authorization is None:
            return
        try:
            allowed = self.authorization.can_manage_alert_recipients(
                actor_user_id, account_id, site_id
            )
        except Exception as exc:
            raise _wrap("authorize alert recipient management", exc) from exc
        if not allowed:
            raise AlertingError("actor is not authorized to manage alert recipients")

    def _new_recipient_id(self) -> str:
        if self.id_generator is None:
            raise AlertingError("alert recipient id generator is required")
        recipient_id = (self.id_generator() or "").strip()
        if not recipient_id:
            raise AlertingError("alert recipient id is required")
        return recipient_id

    def _now(self) -> datetime:
        if self.clock is not None:
            return _utc(self.clock())
        return datetime.now(timezone.utc)