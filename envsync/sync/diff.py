"""Diff engine — compute the minimal plan reconciling remote with desired state.

Pure functions, no I/O. Entries are keyed by name and kind, since GitHub
keeps variables and secrets in separate namespaces. Rules per entry:

- declared locally, absent remotely → create
- variable in both with a different value → update
- secret in both → update according to the SecretPolicy
- a remote entry of the other kind under a declared name → delete it, so a
  name never ends up as both a variable and a secret
- present remotely only → delete, but only when pruning

Operations are ordered creates, then updates, then deletes, each sorted by
entry name, so output and tests are reproducible.
"""

from __future__ import annotations

from collections.abc import Mapping

from envsync.models import (
    DesiredConfig,
    Environment,
    EnvironmentEntry,
    OperationKind,
    PlannedOperation,
    SecretPolicy,
    SyncPlan,
)

_KIND_ORDER = {
    OperationKind.CREATE: 0,
    OperationKind.UPDATE: 1,
    OperationKind.DELETE: 2,
}


def compute_plan(
    desired: Environment,
    observed: Environment,
    *,
    prune: bool = False,
    secret_policy: SecretPolicy = SecretPolicy.CHANGED,
) -> SyncPlan:
    """Diff one environment's desired entries against its observed entries."""
    env = desired.name
    operations: list[PlannedOperation] = []
    deleting: set[tuple[str, bool]] = set()

    def delete(current: EnvironmentEntry) -> None:
        key = (current.name, current.is_secret)
        if key not in deleting:
            deleting.add(key)
            operations.append(PlannedOperation(OperationKind.DELETE, env, current))

    for wanted in desired.entries:
        current = observed.get(wanted.name, is_secret=wanted.is_secret)
        if current is None:
            operations.append(PlannedOperation(OperationKind.CREATE, env, wanted))
        elif _needs_update(wanted, current, secret_policy):
            operations.append(PlannedOperation(OperationKind.UPDATE, env, wanted))

        other_kind = observed.get(wanted.name, is_secret=not wanted.is_secret)
        if other_kind is not None:
            delete(other_kind)

    if prune:
        declared = {(entry.name, entry.is_secret) for entry in desired.entries}
        for current in observed.entries:
            if (current.name, current.is_secret) not in declared:
                delete(current)

    operations.sort(key=lambda op: (_KIND_ORDER[op.kind], op.entry.name, op.entry.is_secret))
    return SyncPlan(environment=env, operations=tuple(operations))


def compute_plans(
    config: DesiredConfig,
    observed: Mapping[str, Environment],
    *,
    prune: bool = False,
    secret_policy: SecretPolicy = SecretPolicy.CHANGED,
) -> list[SyncPlan]:
    """Diff every environment in ``config``.

    Environments missing from ``observed`` are treated as empty.
    """
    return [
        compute_plan(
            desired,
            observed.get(desired.name) or Environment(name=desired.name),
            prune=prune,
            secret_policy=secret_policy,
        )
        for desired in config.environments
    ]


def _needs_update(
    wanted: EnvironmentEntry,
    current: EnvironmentEntry,
    secret_policy: SecretPolicy,
) -> bool:
    if not wanted.is_secret:
        return wanted.value != current.value
    if secret_policy == SecretPolicy.ALWAYS:
        return True
    return wanted.changed
