"""Audit sinks for entitlement grants and payment anomalies.

Records:
  entitlement.granted           : a payment reached `completed` (one per payment)
  entitlement.override.issued   : beta-code / coupon token minted
  payment.amount_mismatch       : provider reported a different amount (fraud flag)

Sink selection (get_default_audit_sink):
  AUDIT_FILE_DIR set → FileAuditSink (one JSON file per record)
  otherwise          → InMemoryAuditSink (bounded, process lifetime)

Every record is logged as well, so the JSON log stream is a complete audit
trail even with the in-memory sink.
"""

import json
import logging
import secrets
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from planner_api.config.env import get_audit_file_dir

logger = logging.getLogger(__name__)

ENTITLEMENT_GRANTED = "entitlement.granted"
OVERRIDE_ISSUED = "entitlement.override.issued"
AMOUNT_MISMATCH = "payment.amount_mismatch"


@runtime_checkable
class AuditSink(Protocol):
    """Minimal interface for all audit sinks."""

    def put_record(self, key: str, data: dict) -> None:
        """Write an immutable audit record.

        Args:
            key: Unique record key.
            data: Record payload (JSON-serialisable).
        """
        ...


class InMemoryAuditSink:
    """Bounded in-process sink; oldest records drop first."""

    def __init__(self, max_records: int = 10_000) -> None:
        self._records: deque[tuple[str, dict]] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def put_record(self, key: str, data: dict) -> None:
        with self._lock:
            self._records.append((key, dict(data)))

    def records(self, event: Optional[str] = None) -> list[dict]:
        with self._lock:
            return [data for _, data in self._records if event is None or data.get("event") == event]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class FileAuditSink:
    """Write audit records as JSON files on the local filesystem."""

    def __init__(self, directory: str) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    def put_record(self, key: str, data: dict) -> None:
        filename = key.replace("/", "_").replace(":", "_") + ".json"
        filepath = self._dir / filename
        filepath.write_text(json.dumps(data, ensure_ascii=False, indent=2, default=str), encoding="utf-8")


def get_default_audit_sink() -> AuditSink:
    directory = get_audit_file_dir()
    if directory:
        logger.info("Audit sink: file", extra={"event": "audit.sink.file", "directory": directory})
        return FileAuditSink(directory)
    return InMemoryAuditSink()


def record_audit_event(sink: AuditSink, event: str, **fields: Any) -> dict:
    """Build, store and log one audit record. Returns the record."""
    now = datetime.now(timezone.utc)
    record = {"event": event, "recorded_at": now.isoformat(), **fields}
    key = f"{event}/{now.strftime('%Y%m%dT%H%M%S')}-{secrets.token_hex(4)}"

    sink.put_record(key, record)
    log = logger.warning if event == AMOUNT_MISMATCH else logger.info
    log("Audit record written", extra={"audit_key": key, **record})
    return record
