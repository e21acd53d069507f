"""Sync driver — load, observe, diff and apply, one environment at a time.

Operations are applied sequentially in plan order. A failed operation is
recorded and the run continues (no rollback of earlier operations). Only
an ``AuthError`` aborts the run.
"""

from __future__ import annotations

import logging
from typing import Protocol

from envsync.errors import AuthError, ConfigIssue, NotFoundError, RemoteError, ValidationError
from envsync.models import (
    DesiredConfig,
    Environment,
    EnvironmentEntry,
    EnvironmentFailure,
    OperationKind,
    OperationResult,
    Outcome,
    PlannedOperation,
    SecretPolicy,
    SyncReport,
)
from envsync.security.audit_log import AuditLogger
from envsync.sync.diff import compute_plan

logger = logging.getLogger(__name__)


class EnvironmentClient(Protocol):
    """What the driver needs from a remote client."""

    @property
    def repository(self) -> str:
        ...

    def list_environments(self) -> list[str]:
        ...

    def upsert_environment(self, environment: str) -> None:
        ...

    def list_entries(self, environment: str) -> Environment:
        ...

    def create_entry(self, environment: str, entry: EnvironmentEntry) -> None:
        ...

    def update_entry(self, environment: str, entry: EnvironmentEntry) -> None:
        ...

    def delete_entry(self, environment: str, name: str, is_secret: bool = False) -> None:
        ...


class SyncDriver:
    """Runs one synchronisation pass against one repository.

    The client is passed in explicitly and is scoped to the run; the
    driver holds no other state between runs.
    """

    def __init__(
        self,
        client: EnvironmentClient,
        audit: AuditLogger | None = None,
        actor: str = "",
    ):
        self.client = client
        self.audit = audit
        self.actor = actor

    def run(
        self,
        config: DesiredConfig,
        *,
        environments: list[str] | tuple[str, ...] | None = None,
        prune: bool = False,
        dry_run: bool = False,
        secret_policy: SecretPolicy = SecretPolicy.CHANGED,
        create_missing: bool = True,
    ) -> SyncReport:
        """Sync every environment in ``config`` (or only ``environments``).

        Raises:
            ValidationError: ``environments`` names one not in the config.
            AuthError: Credentials rejected at any point.
            RemoteAPIError: The repository's environments could not be listed.
        """
        if environments:
            missing = [name for name in environments if config.get(name) is None]
            if missing:
                raise ValidationError(
                    [ConfigIssue(name, "environment is not declared in the config") for name in missing]
                )
            config = config.select(environments)

        report = SyncReport(repository=self.client.repository, dry_run=dry_run)
        remote_envs = set(self.client.list_environments())
        logger.info("Repository %s has %d environment(s)", report.repository, len(remote_envs))

        for desired in config.environments:
            try:
                observed = self._observe(desired.name, remote_envs, dry_run, create_missing)
            except AuthError:
                raise
            except (NotFoundError, RemoteError) as e:
                logger.error("Skipping environment %s: %s", desired.name, e)
                report.environment_failures.append(EnvironmentFailure(desired.name, str(e)))
                continue

            if observed is None:
                reason = "environment does not exist remotely and creation is disabled"
                logger.error("Skipping environment %s: %s", desired.name, reason)
                report.environment_failures.append(EnvironmentFailure(desired.name, reason))
                continue

            plan = compute_plan(desired, observed, prune=prune, secret_policy=secret_policy)
            report.plans.append(plan)
            logger.info("Environment %s: %d planned operation(s)", desired.name, len(plan))

            for operation in plan:
                report.results.append(self._apply(operation, dry_run))

        logger.info("Sync of %s finished: %s", report.repository, report.summary())
        return report

    # -- internals -------------------------------------------------------------

    def _observe(
        self,
        environment: str,
        remote_envs: set[str],
        dry_run: bool,
        create_missing: bool,
    ) -> Environment | None:
        if environment in remote_envs:
            return self.client.list_entries(environment)
        if not create_missing:
            return None
        if dry_run:
            logger.info("Environment %s would be created", environment)
            return Environment(name=environment)

        logger.info("Creating environment %s", environment)
        try:
            self.client.upsert_environment(environment)
        except (NotFoundError, RemoteError) as e:
            self._record("environment.create", environment, environment, success=False, error=str(e))
            raise
        self._record("environment.create", environment, environment)
        return self.client.list_entries(environment)

    def _apply(self, operation: PlannedOperation, dry_run: bool) -> OperationResult:
        if dry_run:
            return OperationResult(operation, Outcome.SKIPPED, "dry run")

        env = operation.environment
        entry = operation.entry
        action = f"{entry.kind}.{operation.kind.value}"
        try:
            if operation.kind == OperationKind.CREATE:
                self.client.create_entry(env, entry)
            elif operation.kind == OperationKind.UPDATE:
                self.client.update_entry(env, entry)
            else:
                self.client.delete_entry(env, entry.name, is_secret=entry.is_secret)
        except AuthError:
            raise
        except (NotFoundError, RemoteError) as e:
            logger.error("Failed to %s in %s: %s", operation.describe(), env, e)
            self._record(action, env, entry.name, success=False, error=str(e))
            return OperationResult(operation, Outcome.FAILED, str(e))

        logger.info("Applied %s in %s", operation.describe(), env)
        self._record(action, env, entry.name)
        return OperationResult(operation, Outcome.APPLIED)

    def _record(
        self,
        action: str,
        environment: str,
        resource_id: str,
        success: bool = True,
        error: str = "",
    ) -> None:
        if self.audit is None:
            return
        details = {"error": error} if error else {}
        self.audit.log_event(
            actor=self.actor,
            action=action,
            repository=self.client.repository,
            environment=environment,
            resource_id=resource_id,
            details=details,
            success=success,
        )
