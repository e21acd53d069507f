"""Core data models for environment synchronisation.

Covers: entries and environments (desired and observed), the desired config
loaded from disk, the sync plan produced by the diff engine, and the
per-run report assembled by the sync driver.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

MASK = "***"


class SecretPolicy(Enum):
    """When an existing remote secret is rewritten.

    Remote secret values can never be read back, so equality cannot be
    checked. The caller chooses one of these policies explicitly.
    """

    ALWAYS = "always"  # Rewrite every declared secret on every run
    CHANGED = "changed"  # Rewrite only secrets marked ``changed = true``


class OperationKind(Enum):
    """Kind of change to apply to one remote entry."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Outcome(Enum):
    """What happened to a planned operation."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


# --- Entries / environments ---


@dataclass(frozen=True)
class EnvironmentEntry:
    """One named variable or secret within an environment.

    ``value`` is ``None`` for secrets observed on the remote side, since
    secret values are write-only.
    """

    name: str
    value: str | None
    is_secret: bool = False
    changed: bool = False  # Local "marked changed" flag, see SecretPolicy.CHANGED

    @property
    def kind(self) -> str:
        return "secret" if self.is_secret else "variable"

    def display_value(self) -> str:
        if self.is_secret or self.value is None:
            return MASK
        return self.value


@dataclass(frozen=True)
class Environment:
    """A named deployment environment and its entries."""

    name: str
    entries: tuple[EnvironmentEntry, ...] = ()

    def get(self, name: str, is_secret: bool | None = None) -> EnvironmentEntry | None:
        """Look up an entry by name, optionally restricted to one kind.

        Variables and secrets live in separate remote namespaces, so an
        observed environment may hold both kinds under one name.
        """
        for entry in self.entries:
            if entry.name == name and (is_secret is None or entry.is_secret == is_secret):
                return entry
        return None

    def names(self) -> set[str]:
        return {entry.name for entry in self.entries}

    @property
    def variables(self) -> list[EnvironmentEntry]:
        return [e for e in self.entries if not e.is_secret]

    @property
    def secrets(self) -> list[EnvironmentEntry]:
        return [e for e in self.entries if e.is_secret]


@dataclass(frozen=True)
class DesiredConfig:
    """The desired state of every environment, as loaded from disk."""

    environments: tuple[Environment, ...] = ()
    source: Path | None = None

    def get(self, name: str) -> Environment | None:
        for env in self.environments:
            if env.name == name:
                return env
        return None

    @property
    def environment_names(self) -> list[str]:
        return [env.name for env in self.environments]

    def select(self, names: list[str] | tuple[str, ...]) -> DesiredConfig:
        """Return a config restricted to ``names``, keeping file order."""
        wanted = set(names)
        return DesiredConfig(
            environments=tuple(e for e in self.environments if e.name in wanted),
            source=self.source,
        )


# --- Plan ---


@dataclass(frozen=True)
class PlannedOperation:
    """A single create/update/delete against one remote entry."""

    kind: OperationKind
    environment: str
    entry: EnvironmentEntry

    def describe(self) -> str:
        if self.kind == OperationKind.DELETE:
            return f"{self.kind.value} {self.entry.kind} {self.entry.name}"
        return (
            f"{self.kind.value} {self.entry.kind} "
            f"{self.entry.name}={self.entry.display_value()}"
        )


@dataclass(frozen=True)
class SyncPlan:
    """Ordered operations reconciling one environment with its desired state."""

    environment: str
    operations: tuple[PlannedOperation, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def of_kind(self, kind: OperationKind) -> list[PlannedOperation]:
        return [op for op in self.operations if op.kind == kind]

    def __iter__(self):
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)


# --- Report ---


@dataclass
class OperationResult:
    """Outcome of one planned operation."""

    operation: PlannedOperation
    outcome: Outcome
    reason: str = ""


@dataclass
class EnvironmentFailure:
    """An environment that could not be synced at all."""

    environment: str
    reason: str


@dataclass
class SyncReport:
    """Everything that happened during one sync run."""

    repository: str
    dry_run: bool = False
    plans: list[SyncPlan] = field(default_factory=list)
    results: list[OperationResult] = field(default_factory=list)
    environment_failures: list[EnvironmentFailure] = field(default_factory=list)

    @property
    def applied(self) -> list[OperationResult]:
        return [r for r in self.results if r.outcome == Outcome.APPLIED]

    @property
    def skipped(self) -> list[OperationResult]:
        return [r for r in self.results if r.outcome == Outcome.SKIPPED]

    @property
    def failed(self) -> list[OperationResult]:
        return [r for r in self.results if r.outcome == Outcome.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.environment_failures

    def summary(self) -> str:
        status = "OK" if self.ok else "FAILED"
        return (
            f"[{status}] {len(self.applied)} applied, {len(self.skipped)} skipped, "
            f"{len(self.failed)} failed, {len(self.environment_failures)} environment error(s)"
        )
