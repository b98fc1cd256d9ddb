# homesignal

Domain services for a control plane that looks after a fleet of Home
Assistant installations. The package has no runtime dependencies and works
on Python 3.10 and later.

Each service is a dataclass that takes the collaborators it needs:
repositories, verifiers, ID generators and clocks. The collaborators are
described as `typing.Protocol` classes, so any object with the right methods
will do. When a service cannot finish its work it raises an exception. It
never returns an error code.

## Modules

### `homesignal.alerting`

`AlertService(repository, verifier, id_generator, clock)` manages the alert
lifecycle.

- `intake_candidate(candidate)` trims and validates a `Candidate`. It then
  records the candidate in the repository and returns a `CandidateResult`:
  - A candidate already seen gives `duplicate=True, ignored=True`.
  - The `StateVerifier` then checks the current state.
  - A healthy verification with no active alert is ignored.
  - A healthy verification with an active alert resolves that alert.
  - An unhealthy verification creates a new alert, or updates the active
    one and increments its `occurrence_count`.
- `acknowledge_alert(request)` sets `acknowledged_at` and
  `acknowledged_by_user_id`.
- `snooze_alert(request)` sets `snoozed_until`. The time must be in the
  future.
- `resolve_alert(request)` marks the alert `Status.RESOLVED`.

Every change is written through `Repository.record_alert_event` as an
`AlertEvent`. Failures raise `AlertingError`. Repositories raise
`NotFoundError` for a missing record, and that error type is kept when it
is wrapped.

### `homesignal.recipients`

`RecipientService(repository, authorization, id_generator, clock)` manages
who receives alert e-mails.

- `create_recipient`, `update_recipient` and `delete_recipient` check the
  actor against the optional `RecipientAuthorization` first.
- A new recipient starts out `RecipientStatus.VERIFIED` when the actor's own
  verified e-mail matches it, ignoring case. Otherwise it starts out
  `PENDING_VERIFICATION`.
- Deleting marks the recipient `DELETED`. It is not removed.
- `eligible_recipients(alert)` returns the verified e-mail recipients that
  have an enabled subscription for the alert's family and that are either
  account-wide or belong to the alert's site. Both `backup_failed` and
  `backup_overdue` alerts map to
  `SubscriptionFamily.BACKUP_FAILED_OR_OVERDUE`.
- `normalize_email(value)` returns the address as given and in lower case.
- `normalize_subscriptions(families)` drops unknown and repeated families.
  An empty list gives all three families.

### `homesignal.artifacts`

`ArtifactService(repository, issuer, purposes, bucket, id_generator, clock)`.

- `create_upload(request)` checks the `Purpose` against
  `default_purpose_registry()` or the `purposes` mapping you pass in. It
  checks the content type and the expected size, then stores an `UploadSlot`
  and asks the `SignedURLIssuer` for an `UploadCapability`.
- The object key comes from `build_object_key(slot)`:
  `artifacts/accounts/<account>/sites/<site>/devices/<device>/<purpose>/YYYY/MM/DD/<upload_id>`.
  Account, site and device IDs that contain `/` or `\` are rejected.
- Upload URLs expire after 15 minutes.
- `str()` and `repr()` of `UploadCapability` and `CreateUploadResponse`
  show the signed URL as `<redacted>`.

Errors raise `ArtifactError`.

### `homesignal.authorization`

`AuthorizationService(auth).can(subject, action, resource)` returns a
`Decision` with one of these reasons:

- `invalid_action`
- `unsupported_subject`: the subject is not a user, or has no ID.
- `permission_granted`
- `permission_missing`

`valid_action(action)` accepts lower snake-case `resource:verb` strings such
as `site:view` or `device_claim_invite:create`.

### `homesignal.routes`

The route tables are `PUBLIC_ROUTES`, `AGENT_ROUTES` and `INTERNAL_ROUTES`.

- `find_public_route(method, path)` and `find_route(method, path, routes)`
  return a pair: the matching route, or `None`, and whether any route
  matched the path at all. The second value tells "method not allowed"
  apart from "not found".
- `route_pattern_matches` treats `{name}` as one non-empty segment.
- `split_route` splits a path into its segments.

### `homesignal.throttling`

- `IdempotencyStore(ttl=10 minutes)`: `get_or_store(scope, key,
  request_hash, produce)` calls `produce()` once. Later calls with the same
  key replay a copy of the response, carrying the header
  `X-HomeSignal-Idempotency-Replayed: true`. Reusing a key with a different
  hash raises `IdempotencyConflict`.
- `RateLimiter(limit=600, window=1 minute)`: `allow(scope)` returns
  `(allowed, retry_after_seconds)`.
- `request_hash(method, path, body)` is the hex SHA-256 of method, path and
  body, separated by newlines.

Both classes accept a `clock` callable, which makes them easy to test.

## Example

```python
from homesignal.artifacts import (
    ArtifactService,
    CreateUploadRequest,
    Purpose,
    UploadCapability,
)


class MemoryRepository:
    def __init__(self):
        self.slots = []

    def create_upload_slot(self, slot):
        self.slots.append(slot)


class FixedIssuer:
    def issue_upload_url(self, request):
        return UploadCapability(
            upload_id=request.upload_id,
            method=request.method,
            url="https://storage.example.com/upload",
            expires_at=request.expires_at,
            content_type=request.content_type,
            max_bytes=request.max_size_bytes,
        )


service = ArtifactService(
    repository=MemoryRepository(),
    issuer=FixedIssuer(),
    bucket="artifacts-bucket",
    id_generator=lambda: "art_123",
)
response = service.create_upload(CreateUploadRequest(
    account_id="acct_123",
    site_id="site_123",
    device_id="dev_123",
    purpose=Purpose.BACKUP_ARTIFACT,
    content_type="application/gzip",
))
print(response)  # the signed URL is shown as <redacted>
```

## What the package does not do

This is a library of domain logic only:

- It has no HTTP server and no request handler that uses the route tables.
- It has no command-line tools.
- It does not store or fetch data from any database.
- It does not sign upload URLs, and it does not verify identity tokens.

Storage, URL signing and permission lookup are supplied by the objects you
pass to each service.

## Running the tests

```
pip install -e .[test]
pytest
```