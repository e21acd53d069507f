"""Audit log of applied sync operations.

File-based JSON audit logging with filtering. Every operation the sync
driver applies (or fails to apply) is stored as newline-delimited JSON in
daily files under ``~/.envsync/audit_logs/`` unless another directory is
configured. Secret values are never written.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    """A single audit log entry."""

    id: str
    timestamp: str
    actor: str
    action: str  # e.g. "variable.create", "secret.update", "environment.create"
    repository: str
    environment: str
    resource_id: str  # Entry or environment name
    details: dict[str, Any] = field(default_factory=dict)
    success: bool = True


class AuditLogger:
    """File-based JSON audit logger."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".envsync" / "audit_logs"
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _read_all_entries(self) -> list[AuditEntry]:
        entries: list[AuditEntry] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
                if not line.strip():
                    continue
                try:
                    entries.append(AuditEntry(**json.loads(line)))
                except (ValueError, TypeError) as e:
                    logger.warning("Skipping corrupt audit record %s:%d (%s)", path.name, lineno, e)
        return entries

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_event(
        self,
        actor: str,
        action: str,
        repository: str,
        environment: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
        success: bool = True,
    ) -> AuditEntry:
        """Record an audit event and return the created entry."""
        now = datetime.now(timezone.utc)
        entry = AuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=now.isoformat(),
            actor=actor,
            action=action,
            repository=repository,
            environment=environment,
            resource_id=resource_id,
            details=details or {},
            success=success,
        )
        with self._log_file_for_date(now).open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(asdict(entry)) + "\n")
        return entry

    def get_events(
        self,
        *,
        action: Optional[str] = None,
        repository: Optional[str] = None,
        environment: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 200,
    ) -> list[AuditEntry]:
        """Return filtered audit events, newest first."""
        entries = self._read_all_entries()

        if action:
            entries = [e for e in entries if e.action == action]
        if repository:
            entries = [e for e in entries if e.repository == repository]
        if environment:
            entries = [e for e in entries if e.environment == environment]
        if success is not None:
            entries = [e for e in entries if e.success == success]

        # Reverse first so records sharing a timestamp keep newest-first order
        entries.reverse()
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]
