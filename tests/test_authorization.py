import pytest

from homesignal.authorization import (
    AuthorizationService,
    Decision,
    Resource,
    Subject,
    valid_action,
)


class FakeAuthRepository:
    def __init__(self):
        self.permissions = {}
        self.calls = []

    def list_permission_keys(self, user_id, account_id, site_id):
        self.calls.append((user_id, account_id, site_id))
        return self.permissions.get(user_id, [])


class FailingAuthRepository:
    def list_permission_keys(self, user_id, account_id, site_id):
        raise OSError("database down")


def test_can_allows_matching_permission():
    repo = FakeAuthRepository()
    repo.permissions["user_123"] = ["site:view"]
    decision = AuthorizationService(auth=repo).can(
        Subject(type="user", id="user_123"),
        "site:view",
        Resource(account_id="acct_123", site_id="site_123"),
    )
    assert decision.allowed
    assert decision.reason == "permission_granted"
    assert repo.calls == [("user_123", "acct_123", "site_123")]


def test_can_denies_missing_permission():
    repo = FakeAuthRepository()
    repo.permissions["user_123"] = ["site:view"]
    decision = AuthorizationService(auth=repo).can(
        Subject(type="user", id="user_123"), "site:update", Resource()
    )
    assert decision == Decision(allowed=False, reason="permission_missing")


def test_can_rejects_invalid_action_shape():
    decision = AuthorizationService(auth=FakeAuthRepository()).can(
        Subject(type="user", id="user_123"), "Site:View", Resource()
    )
    assert decision == Decision(allowed=False, reason="invalid_action")


def test_can_rejects_unsupported_subject():
    decision = AuthorizationService(auth=FakeAuthRepository()).can(
        Subject(type="api_key", id="user_123"), "site:view", Resource()
    )
    assert decision == Decision(allowed=False, reason="unsupported_subject")


def test_can_rejects_subject_without_id():
    decision = AuthorizationService(auth=FakeAuthRepository()).can(
        Subject(type="user", id=""), "site:view", Resource()
    )
    assert decision.reason == "unsupported_subject"


def test_can_requires_repository():
    with pytest.raises(RuntimeError, match="auth repository is required"):
        AuthorizationService().can(Subject(type="user", id="user_123"), "site:view", Resource())


def test_can_wraps_repository_error():
    with pytest.raises(RuntimeError, match="list permissions: database down"):
        AuthorizationService(auth=FailingAuthRepository()).can(
            Subject(type="user", id="user_123"), "site:view", Resource()
        )


@pytest.mark.parametrize(
    "action, expected",
    [
        ("site:view", True),
        ("device_claim_invite:create", True),
        ("site-view", False),
        ("site:View", False),
        ("site:", False),
    ],
)
def test_valid_action(action, expected):
    assert valid_action(action) is expected