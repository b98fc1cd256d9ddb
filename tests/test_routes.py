from homesignal.routes import (
    AGENT_ROUTES,
    INTERNAL_ROUTES,
    PUBLIC_ROUTES,
    PublicAuth,
    Route,
    find_public_route,
    find_route,
    route_pattern_matches,
    split_route,
)


def test_find_public_route_static_path():
    route, matched = find_public_route("GET", "/api/v1/dashboard")
    assert matched
    assert route.operation_id == "getDashboard"
    assert route.auth == PublicAuth.HUMAN
    assert not route.requires_idempotency


def test_find_public_route_with_placeholder():
    route, matched = find_public_route("POST", "/api/v1/sites/site_1/device-claim-invites")
    assert matched
    assert route.operation_id == "createDeviceClaimInvite"
    assert route.requires_idempotency


def test_find_public_route_enrollment_boundary():
    route, _ = find_public_route("POST", "/api/v1/device-enrollment/claim-invites/verify")
    assert route.operation_id == "verifyClaimInvite"
    assert route.auth == PublicAuth.ENROLLMENT


def test_find_public_route_wrong_method_reports_path_match():
    assert find_public_route("DELETE", "/api/v1/devices") == (None, True)


def test_find_public_route_unknown_path():
    assert find_public_route("GET", "/api/v1/unknown") == (None, False)


def test_placeholder_requires_non_empty_segment():
    assert find_public_route("POST", "/api/v1/sites//device-claim-invites") == (None, False)


def test_find_route_agent_table():
    route, matched = find_route("POST", "/agent/commands/cmd_1/ack", AGENT_ROUTES)
    assert matched
    assert route.pattern == "/agent/commands/{command_id}/ack"


def test_find_route_agent_method_mismatch():
    assert find_route("POST", "/agent/commands/cmd_1", AGENT_ROUTES) == (None, True)


def test_find_route_internal_table():
    route, _ = find_route("POST", "/internal/alert-candidates", INTERNAL_ROUTES)
    assert route == Route("POST", "/internal/alert-candidates")


def test_find_route_empty_table():
    assert find_route("GET", "/agent/events", []) == (None, False)


def test_split_route_trims_slashes():
    assert split_route("/a/b/") == ["a", "b"]
    assert split_route("/") == []
    assert split_route("") == []


def test_route_pattern_matches_trailing_slash_and_length():
    assert route_pattern_matches("/agent/telemetry", "/agent/telemetry/")
    assert not route_pattern_matches("/agent/telemetry", "/agent/telemetry/extra")
    assert not route_pattern_matches("/agent/telemetry", "/agent/events")


def test_every_table_pattern_matches_itself_with_sample_ids():
    for route in (*PUBLIC_ROUTES, *AGENT_ROUTES, *INTERNAL_ROUTES):
        concrete = "/".join(
            "x1" if part.startswith("{") else part for part in route.pattern.split("/")
        )
        assert route_pattern_matches(route.pattern, concrete)