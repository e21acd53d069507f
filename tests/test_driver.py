"""Tests for the sync driver, using an in-memory remote."""

import tempfile
from pathlib import Path

import pytest

from envsync.config.loader import parse_config
from envsync.errors import AuthError, NotFoundError, RemoteError, ValidationError
from envsync.models import Environment, EnvironmentEntry, Outcome, SecretPolicy
from envsync.security.audit_log import AuditLogger
from envsync.sync.driver import SyncDriver


class FakeClient:
    """In-memory stand-in for GitHubEnvClient that records mutating calls."""

    repository = "octo/widgets"

    def __init__(self, environments: dict[str, dict[str, str]] | None = None):
        # {env: {name: value}}; secrets are stored under "secret:NAME"
        self.environments = environments or {}
        self.calls: list[tuple] = []
        self.fail: dict[tuple[str, str], Exception] = {}
        self.fail_listing: dict[str, Exception] = {}

    def list_environments(self) -> list[str]:
        return sorted(self.environments)

    def upsert_environment(self, environment: str) -> None:
        self.calls.append(("upsert", environment))
        self.environments.setdefault(environment, {})

    def list_entries(self, environment: str) -> Environment:
        if environment in self.fail_listing:
            raise self.fail_listing[environment]
        entries = []
        for key, value in self.environments[environment].items():
            if key.startswith("secret:"):
                entries.append(EnvironmentEntry(key[len("secret:"):], None, is_secret=True))
            else:
                entries.append(EnvironmentEntry(key, value))
        return Environment(name=environment, entries=tuple(entries))

    def _key(self, name: str, is_secret: bool) -> str:
        return f"secret:{name}" if is_secret else name

    def _maybe_fail(self, action: str, name: str) -> None:
        error = self.fail.get((action, name))
        if error is not None:
            raise error

    def create_entry(self, environment: str, entry: EnvironmentEntry) -> None:
        self.calls.append(("create", environment, entry.name))
        self._maybe_fail("create", entry.name)
        self.environments[environment][self._key(entry.name, entry.is_secret)] = entry.value

    def update_entry(self, environment: str, entry: EnvironmentEntry) -> None:
        self.calls.append(("update", environment, entry.name))
        self._maybe_fail("update", entry.name)
        self.environments[environment][self._key(entry.name, entry.is_secret)] = entry.value

    def delete_entry(self, environment: str, name: str, is_secret: bool = False) -> None:
        self.calls.append(("delete", environment, name))
        self._maybe_fail("delete", name)
        del self.environments[environment][self._key(name, is_secret)]


CONFIG = """
[production.variables]
A = "1"
B = "2"
D = "4"

[production.secrets]
TOKEN = "s3cret"

[staging.variables]
A = "staging"
"""


def _config():
    return parse_config(CONFIG)


# --- Happy path ---


def test_sync_applies_plan_and_reports():
    client = FakeClient({"production": {"A": "1", "C": "3"}, "staging": {"A": "staging"}})
    report = SyncDriver(client).run(_config(), prune=True)

    assert report.ok
    assert [r.outcome for r in report.results] == [Outcome.APPLIED] * 4
    assert client.calls == [
        ("create", "production", "B"),
        ("create", "production", "D"),
        ("create", "production", "TOKEN"),
        ("delete", "production", "C"),
    ]
    assert client.environments["production"] == {"A": "1", "B": "2", "D": "4", "secret:TOKEN": "s3cret"}
    assert [p.environment for p in report.plans] == ["production", "staging"]
    assert report.plans[1].is_empty


def test_second_run_is_a_no_op():
    client = FakeClient({"production": {}, "staging": {}})
    SyncDriver(client).run(_config(), prune=True)
    client.calls.clear()

    report = SyncDriver(client).run(_config(), prune=True, secret_policy=SecretPolicy.CHANGED)
    assert report.ok
    assert report.results == []
    assert client.calls == []


def test_missing_environment_is_created():
    client = FakeClient({"production": {}})
    report = SyncDriver(client).run(_config())
    assert ("upsert", "staging") in client.calls
    assert client.environments["staging"] == {"A": "staging"}
    assert report.ok


def test_missing_environment_without_creation_is_reported():
    client = FakeClient({"production": {}})
    report = SyncDriver(client).run(_config(), create_missing=False)
    assert not report.ok
    assert [f.environment for f in report.environment_failures] == ["staging"]
    assert ("upsert", "staging") not in client.calls


def test_environment_filter():
    client = FakeClient({"production": {}, "staging": {}})
    report = SyncDriver(client).run(_config(), environments=["staging"])
    assert [p.environment for p in report.plans] == ["staging"]
    assert all(call[1] == "staging" for call in client.calls)


def test_unknown_environment_filter_rejected_before_remote_calls():
    client = FakeClient({"production": {}})
    with pytest.raises(ValidationError):
        SyncDriver(client).run(_config(), environments=["qa"])
    assert client.calls == []


# --- Dry run ---


def test_dry_run_never_mutates():
    client = FakeClient({"production": {"C": "3"}})
    report = SyncDriver(client).run(_config(), dry_run=True, prune=True)

    assert client.calls == []
    assert report.dry_run
    assert report.results
    assert all(r.outcome == Outcome.SKIPPED for r in report.results)
    assert all(r.reason == "dry run" for r in report.results)
    staging_plan = report.plans[1]
    assert [op.entry.name for op in staging_plan] == ["A"]


# --- Failures ---


def test_remote_error_on_one_operation_does_not_stop_the_rest():
    client = FakeClient({"production": {}, "staging": {}})
    client.fail[("create", "B")] = RemoteError("Service Unavailable", status_code=503)
    report = SyncDriver(client).run(_config())

    assert len(report.failed) == 1
    failed = report.failed[0]
    assert failed.operation.entry.name == "B"
    assert "503" in failed.reason
    # Operations after the failure still ran
    assert ("create", "production", "D") in client.calls
    assert ("create", "staging", "A") in client.calls
    assert not report.ok


def test_not_found_while_listing_skips_environment():
    client = FakeClient({"production": {}, "staging": {}})
    client.fail_listing["production"] = NotFoundError("Not Found", status_code=404)
    report = SyncDriver(client).run(_config())

    assert [f.environment for f in report.environment_failures] == ["production"]
    assert ("create", "staging", "A") in client.calls
    assert not report.ok


def test_auth_error_aborts_run():
    client = FakeClient({"production": {}, "staging": {}})
    client.fail[("create", "A")] = AuthError("Bad credentials", status_code=401)
    with pytest.raises(AuthError):
        SyncDriver(client).run(_config())
    # staging was never reached
    assert not any(call[1] == "staging" for call in client.calls)


# --- Audit ---


def test_applied_and_failed_operations_are_audited():
    client = FakeClient({"production": {}, "staging": {"A": "staging"}})
    client.fail[("create", "B")] = RemoteError("boom", status_code=500)
    with tempfile.TemporaryDirectory() as tmpdir:
        audit = AuditLogger(Path(tmpdir))
        SyncDriver(client, audit=audit, actor="octo").run(_config())

        events = audit.get_events(repository="octo/widgets")
        assert len(events) == 4
        failures = audit.get_events(success=False)
        assert [e.resource_id for e in failures] == ["B"]
        assert failures[0].details["error"].startswith("HTTP 500")
        secret_events = audit.get_events(action="secret.create")
        assert [e.resource_id for e in secret_events] == ["TOKEN"]
        assert all("s3cret" not in str(e.details) for e in events)
