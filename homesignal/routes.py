"""Route tables for the control plane and matching of request paths against them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, TypeVar


class PublicAuth(str, Enum):
    HUMAN = "human"
    ENROLLMENT = "enrollment_bootstrap"


@dataclass(frozen=True)
class PublicRoute:
    method: str
    pattern: str
    operation_id: str
    auth: PublicAuth
    requires_idempotency: bool = False


@dataclass(frozen=True)
class Route:
    method: str
    pattern: str


PUBLIC_ROUTES: tuple[PublicRoute, ...] = (
    PublicRoute("GET", "/api/v1/dashboard", "getDashboard", PublicAuth.HUMAN),
    PublicRoute("GET", "/api/v1/devices", "listDevices", PublicAuth.HUMAN),
    PublicRoute("GET", "/api/v1/activity", "listActivity", PublicAuth.HUMAN),
    PublicRoute("GET", "/api/v1/alerts", "listAlerts", PublicAuth.HUMAN),
    PublicRoute("GET", "/api/v1/alert-recipients", "listAlertRecipients", PublicAuth.HUMAN),
    PublicRoute(
        "POST",
        "/api/v1/sites/{site_id}/device-claim-invites",
        "createDeviceClaimInvite",
        PublicAuth.HUMAN,
        requires_idempotency=True,
    ),
    PublicRoute(
        "POST",
        "/api/v1/device-enrollment/claim-invites/verify",
        "verifyClaimInvite",
        PublicAuth.ENROLLMENT,
    ),
    PublicRoute(
        "POST",
        "/api/v1/device-enrollment/claim-verifications/{claim_verification_id}/confirm",
        "confirmClaimVerification",
        PublicAuth.ENROLLMENT,
        requires_idempotency=True,
    ),
)

AGENT_ROUTES: tuple[Route, ...] = (
    Route("GET", "/agent/commands/{command_id}"),
    Route("POST", "/agent/commands/{command_id}/ack"),
    Route("POST", "/agent/commands/{command_id}/artifact-upload"),
    Route("POST", "/agent/artifact-uploads/{upload_id}/complete"),
    Route("POST", "/agent/commands/{command_id}/result"),
    Route("POST", "/agent/telemetry"),
    Route("POST", "/agent/events"),
)

INTERNAL_ROUTES: tuple[Route, ...] = (Route("POST", "/internal/alert-candidates"),)

_R = TypeVar("_R", PublicRoute, Route)


def split_route(value: str) -> list[str]:
    """Split a path into its segments, ignoring leading and trailing slashes."""
    value = value.strip("/")
    return value.split("/") if value else []


def route_pattern_matches(pattern: str, path: str) -> bool:
    """Return True when the path fits the pattern; ``{name}`` matches one non-empty segment."""
    pattern_parts = split_route(pattern)
    path_parts = split_route(path)
    if len(pattern_parts) != len(path_parts):
        return False
    for pattern_part, path_part in zip(pattern_parts, path_parts):
        if pattern_part.startswith("{") and pattern_part.endswith("}"):
            if not path_part:
                return False
        elif pattern_part != path_part:
            return False
    return True


def _find(method: str, path: str, routes: Iterable[_R]) -> tuple[Optional[_R], bool]:
    path_matched = False
    for route in routes:
        if route_pattern_matches(route.pattern, path):
            path_matched = True
            if route.method == method:
                return route, True
    return None, path_matched


def find_route(method: str, path: str, routes: Iterable[Route]) -> tuple[Optional[Route], bool]:
    """Find the route for method and path.

    Returns the route (or None) and whether any route matched the path at all,
    which tells "method not allowed" apart from "not found".
    """
    return _find(method, path, routes)


def find_public_route(method: str, path: str) -> tuple[Optional[PublicRoute], bool]:
    """Find a public API route; see :func:`find_route` for the result."""
    return _find(method, path, PUBLIC_ROUTES)