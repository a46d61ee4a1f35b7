"""Append-only audit trail of upsert decisions.

Records are kept in memory per operation id and, when a directory is
configured, appended to ``<dir>/<operationId>.jsonl`` as they are recorded so
a trail outlives the process.
"""

import re
import threading
from collections import defaultdict
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import orjson
from loguru import logger

from .models import AuditRecord, Decision

_SAFE_OPERATION_ID = re.compile(r"[A-Za-z0-9._-]+")


class AuditRecorder:
    """Collects one immutable record per terminal decision."""

    def __init__(self, audit_dir: Path | None = None, enabled: bool = True):
        self.audit_dir = Path(audit_dir) if audit_dir is not None else None
        self.enabled = enabled
        self._records: dict[str, list[AuditRecord]] = defaultdict(list)
        self._lock = threading.Lock()

    def record(
        self,
        operation_id: str,
        target_id: str,
        kind: str,
        decision: Decision,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        reason: str | None = None,
        conflict_resolution: str | None = None,
        execution_time_ms: float = 0.0,
        retryable: bool = False,
        timestamp: datetime | None = None,
    ) -> AuditRecord | None:
        """Append a record. Returns None when auditing is disabled."""
        if not self.enabled:
            return None

        entry = AuditRecord(
            operation_id=operation_id,
            target_id=target_id,
            kind=kind,
            decision=decision,
            before_properties=before,
            after_properties=after,
            timestamp=timestamp or datetime.now(UTC),
            reason=reason,
            conflict_resolution=conflict_resolution,
            execution_time_ms=round(execution_time_ms, 3),
            retryable=retryable,
        )

        with self._lock:
            self._records[operation_id].append(entry)
            if self.audit_dir is not None:
                self._append(entry)

        logger.debug(f"Audit {decision} {kind} {target_id}")
        return entry

    def records(self, operation_id: str) -> list[AuditRecord]:
        """Records of one operation in the order they were appended.

        Falls back to the on-disk trail for operations recorded by another
        process.
        """
        with self._lock:
            if operation_id in self._records:
                return list(self._records[operation_id])

        path = self._path_for(operation_id)
        if path is None or not path.exists():
            return []
        with open(path, "rb") as f:
            return [
                AuditRecord.from_dict(orjson.loads(line)) for line in f if line.strip()
            ]

    def operations(self) -> list[str]:
        """Known operation ids, in memory and on disk, newest trail file last."""
        ids = set(self._records)
        if self.audit_dir is not None and self.audit_dir.exists():
            files = sorted(
                self.audit_dir.glob("*.jsonl"), key=lambda p: p.stat().st_mtime
            )
            ordered = [p.stem for p in files]
            return ordered + sorted(ids - set(ordered))
        return sorted(ids)

    @staticmethod
    def check_operation_id(operation_id: str) -> str:
        """Reject ids that cannot name a trail file.

        Raises:
            ValueError: Empty id, or characters outside ``[A-Za-z0-9._-]``
        """
        if not operation_id or not _SAFE_OPERATION_ID.fullmatch(operation_id):
            raise ValueError(f"Invalid operation id: {operation_id!r}")
        return operation_id

    def _path_for(self, operation_id: str) -> Path | None:
        if self.audit_dir is None:
            return None
        return self.audit_dir / f"{self.check_operation_id(operation_id)}.jsonl"

    def _append(self, entry: AuditRecord) -> None:
        path = self._path_for(entry.operation_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "ab") as f:
            f.write(orjson.dumps(entry.to_dict(), default=str) + b"\n")
