"""Permission checks: whether a subject may perform an action on a resource."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

_ACTION_PATTERN = re.compile(r"[a-z][a-z0-9_]*:[a-z][a-z0-9_]*")


@dataclass(frozen=True)
class Subject:
    type: str = ""
    id: str = ""


@dataclass(frozen=True)
class Resource:
    type: str = ""
    id: str = ""
    account_id: str = ""
    site_id: str = ""


@dataclass(frozen=True)
class Decision:
    allowed: bool = False
    reason: str = ""


class AuthRepository(Protocol):
    def list_permission_keys(
        self, user_id: str, account_id: str, site_id: str
    ) -> Sequence[str]: ...


def valid_action(action: str) -> bool:
    """Return True when the action has the form ``resource:verb`` in lower snake case."""
    return _ACTION_PATTERN.fullmatch(action or "") is not None


@dataclass
class AuthorizationService:
    """Grants an action when the subject holds a permission of the same name."""

    auth: Optional[AuthRepository] = None

    def can(self, subject: Subject, action: str, resource: Resource) -> Decision:
        """Decide whether the subject may perform the action on the resource."""
        if not valid_action(action):
            return Decision(allowed=False, reason="invalid_action")
        if subject.type != "user" or not subject.id:
            return Decision(allowed=False, reason="unsupported_subject")
        if self.auth is None:
            raise RuntimeError("auth repository is required")
        try:
            permissions = self.auth.list_permission_keys(
                subject.id, resource.account_id, resource.site_id
            )
        except Exception as exc:
            raise RuntimeError(f"list permissions: {exc}") from exc
        if action in (permissions or ()):
            return Decision(allowed=True, reason="permission_granted")
        return Decision(allowed=False, reason="permission_missing")