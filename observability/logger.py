"""
Observability: operator-facing run events.

Each event is one JSON line on the `observability` logger, tagged with the
run id and a trace id shared by every run of the same runner.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("observability")


class Observability:
    """Emits run_started / node_processed / run_* / execution_metric events."""

    def __init__(self, run_id: str | None = None, trace_id: str | None = None):
        self.run_id = run_id or "unbound"
        self.trace_id = trace_id or uuid.uuid4().hex

    def log_event(self, event_type: str, payload: dict[str, Any], level: str = "INFO") -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "run_id": self.run_id,
            "trace_id": self.trace_id,
            **payload,
        }
        logger.log(logging.getLevelName(level.upper()), json.dumps(entry, ensure_ascii=False, default=str))

    @contextmanager
    def measure(self, operation: str, metadata: dict[str, Any] | None = None):
        """Time the wrapped block; failures are recorded and re-raised."""
        started = time.perf_counter()
        fields: dict[str, Any] = {"operation": operation, **(metadata or {})}
        try:
            yield
        except Exception as exc:
            fields.update(success=False, error=str(exc))
            raise
        else:
            fields["success"] = True
        finally:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            self.log_event("execution_metric", fields, level="INFO" if fields.get("success") else "WARNING")

    def for_run(self, run_id: str) -> "Observability":
        return Observability(run_id, trace_id=self.trace_id)
