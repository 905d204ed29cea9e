"""
Automation Execution Log

Bounded, append-only audit log of automation executions (phase-driven
reconciler runs and manual rule triggers).

CONSTRAINTS:
- APPEND-ONLY: entries are never modified
- BOUNDED: only the most recent N entries are retained, oldest evicted first
- COPY-ON-WRITE: readers get an immutable snapshot (newest first); writers
  replace the snapshot under a lock
- Optional JSONL mirror with fsync; a failed mirror write is logged and
  never breaks the in-memory log
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from . import config
from .models import ExecutionStatus

logger = logging.getLogger("execution_log")


# -----------------------------------------------------------------------------
# Execution Record (Frozen - Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class BusinessAutomationExecution:
    """Immutable record of one automation execution."""
    execution_id: str
    rule_id: str
    template_id: str
    status: str  # ExecutionStatus value
    timestamp: str  # ISO format
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "rule_id": self.rule_id,
            "template_id": self.template_id,
            "status": self.status,
            "timestamp": self.timestamp,
            "message": self.message,
        }


# -----------------------------------------------------------------------------
# Execution Log
# -----------------------------------------------------------------------------
class ExecutionLog:
    """Bounded FIFO execution log."""

    def __init__(
        self,
        limit: Optional[int] = None,
        audit_file: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize log.

        Args:
            limit: Number of entries retained (defaults to config)
            audit_file: Optional JSONL mirror (defaults to config, None = off)
            clock: Time source (optional, for testing)
        """
        self._limit = limit if limit is not None else config.EXECUTION_LOG_LIMIT
        if self._limit < 1:
            raise ValueError(f"Execution log limit must be >= 1, got {self._limit}")
        self._audit_file = audit_file if audit_file is not None else config.AUDIT_FILE
        self._clock = clock or datetime.utcnow
        self._entries: Tuple[BusinessAutomationExecution, ...] = ()
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def append(
        self,
        rule_id: str,
        template_id: str,
        status: Union[ExecutionStatus, str],
        message: str,
    ) -> BusinessAutomationExecution:
        """
        Append an execution record.

        Returns:
            The stored record
        """
        execution = BusinessAutomationExecution(
            execution_id=f"exec-{uuid.uuid4().hex[:8]}",
            rule_id=rule_id,
            template_id=template_id,
            status=ExecutionStatus(status).value,
            timestamp=self._clock().isoformat(),
            message=message,
        )
        with self._lock:
            self._entries = ((execution,) + self._entries)[:self._limit]
            self._mirror(execution)
        logger.debug(f"Execution {execution.execution_id} [{execution.status}] {rule_id}: {message}")
        return execution

    def entries(self) -> Tuple[BusinessAutomationExecution, ...]:
        """Snapshot of retained entries, newest first."""
        return self._entries

    def for_rule(self, rule_id: str) -> Tuple[BusinessAutomationExecution, ...]:
        return tuple(e for e in self._entries if e.rule_id == rule_id)

    def for_template(self, template_id: str) -> Tuple[BusinessAutomationExecution, ...]:
        return tuple(e for e in self._entries if e.template_id == template_id)

    def __len__(self) -> int:
        return len(self._entries)

    def _mirror(self, execution: BusinessAutomationExecution) -> None:
        """Append the record to the JSONL mirror, if configured."""
        if self._audit_file is None:
            return
        try:
            self._audit_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._audit_file, "a") as f:
                f.write(json.dumps(execution.to_dict()) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.error(f"Execution log mirror write failed: {e}")
