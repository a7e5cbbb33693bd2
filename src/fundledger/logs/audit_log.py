from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List

from ..events.schema import EventEnvelope
from ..metrics.ledger import _safe_counter

log = logging.getLogger("fundledger.audit")


def _get_append_counters():
    app = _safe_counter("audit_log_appends_total", "Audit records appended", ["event_type"])
    err = _safe_counter("audit_log_errors_total", "Audit log errors", ["reason"])
    return app, err


REQUIRED_KEYS = {"sequence", "correlation_id", "event_type", "campaign_id", "ts", "event"}


def validate_record(rec: Dict[str, Any]) -> List[str]:
    missing = [k for k in REQUIRED_KEYS if k not in rec]
    return missing


def to_record(env: EventEnvelope) -> Dict[str, Any]:
    return {
        "schema_version": env.schema_version,
        "sequence": env.sequence,
        "correlation_id": env.correlation_id,
        "event_type": env.event.event_type,
        "campaign_id": env.event.campaign_id,
        "ts": env.event.ts,
        "event": env.event.model_dump(),
    }


def append_jsonl(path: str, rec: Dict[str, Any]) -> bool:
    """Append one audit record; returns False (and counts why) when it was not written."""
    app, err = _get_append_counters()
    missing = validate_record(rec)
    if missing:
        err.labels("missing_fields").inc()
        log.error(f"audit record missing fields {sorted(missing)}; not written")
        return False
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False, sort_keys=True) + "\n")
    except OSError as e:
        err.labels("io_error").inc()
        log.error(f"audit log write to {path} failed: {e}")
        return False
    app.labels(rec["event_type"]).inc()
    return True


def read_jsonl(path: str) -> List[Dict[str, Any]]:
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


class AuditLogSink:
    """Ledger event sink writing one JSONL line per envelope."""

    __name__ = "audit_log"

    def __init__(self, path: str = "data/audit/events.jsonl"):
        self.path = path

    def __call__(self, env: EventEnvelope) -> None:
        append_jsonl(self.path, to_record(env))
