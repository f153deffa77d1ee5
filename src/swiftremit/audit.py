"""
Tamper-evident event sink.

Events are append-only JSONL entries with an HMAC hash chain so
tampering is detected during reads.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

from .events import Event, EventTopic
from .storage import ensure_private_dir, ensure_private_file


DEFAULT_AUDIT_PATH = Path.home() / ".swiftremit" / "events.jsonl"
DEFAULT_AUDIT_KEY_PATH = Path.home() / ".swiftremit-secrets" / "audit_hmac.key"


@dataclass
class AuditRecord:
    """A single audit trail entry."""

    topic: str
    timestamp: float
    payload: dict[str, Any]
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def to_json(self) -> str:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, separators=(",", ":"))


class AuditTrail:
    """Append-only JSONL event log with an HMAC hash chain."""

    def __init__(
        self,
        path: Optional[Path] = None,
        key_path: Optional[Path] = None,
    ):
        self.path = path or DEFAULT_AUDIT_PATH
        self.key_path = key_path or DEFAULT_AUDIT_KEY_PATH

        ensure_private_dir(self.path.parent)
        ensure_private_dir(self.key_path.parent)
        ensure_private_file(self.path)
        ensure_private_file(self.key_path)

        self._hmac_key = self._load_or_create_key()
        self._last_hash = self._scan_last_hash()

    def _load_or_create_key(self) -> bytes:
        env_key = os.getenv("SWIFTREMIT_AUDIT_HMAC_KEY")
        if env_key:
            return env_key.encode()
        if self.key_path.exists() and self.key_path.stat().st_size > 0:
            return self.key_path.read_bytes().strip()
        key = secrets.token_hex(32).encode()
        self.key_path.write_bytes(key)
        ensure_private_file(self.key_path)
        return key

    def _scan_last_hash(self) -> str:
        if not self.path.exists():
            return ""
        last = ""
        with open(self.path, "r") as f:
            for line in f:
                if not line.strip():
                    continue
                record = json.loads(line)
                last = record.get("event_hash", "")
        return last

    def _event_hash(self, record_payload: dict, prev_hash: str) -> str:
        canonical = json.dumps(record_payload, sort_keys=True, separators=(",", ":"))
        digest = hmac.new(self._hmac_key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256)
        return digest.hexdigest()

    def emit(self, event: Event) -> None:
        self.log(event)

    def log(self, event: Event) -> AuditRecord:
        payload = {
            "topic": event.topic.value,
            "timestamp": time.time(),
            "payload": dict(event.payload),
        }
        prev_hash = self._last_hash
        current_hash = self._event_hash(payload, prev_hash)

        record = AuditRecord(
            **payload,
            prev_hash=prev_hash or None,
            event_hash=current_hash,
        )

        with open(self.path, "a") as f:
            f.write(record.to_json() + "\n")
            f.flush()
            os.fsync(f.fileno())
        ensure_private_file(self.path)

        self._last_hash = current_hash
        return record

    def read_events(
        self,
        topic: Optional[EventTopic] = None,
        remittance_id: Optional[int] = None,
        limit: int = 100,
    ) -> list[AuditRecord]:
        if not self.path.exists():
            return []

        records: list[AuditRecord] = []
        expected_prev = ""
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                raw = json.loads(line)

                payload = {
                    k: v
                    for k, v in raw.items()
                    if k not in {"prev_hash", "event_hash"}
                }
                prev_hash = raw.get("prev_hash", "") or ""
                event_hash = raw.get("event_hash", "") or ""
                if prev_hash != expected_prev:
                    raise RuntimeError("Audit chain broken: previous hash mismatch")
                expected_hash = self._event_hash(payload, prev_hash)
                if not hmac.compare_digest(expected_hash, event_hash):
                    raise RuntimeError("Audit chain broken: event hash mismatch")
                expected_prev = event_hash

                if topic and raw.get("topic") != topic.value:
                    continue
                if remittance_id is not None and raw.get("payload", {}).get("id") != remittance_id:
                    continue

                records.append(
                    AuditRecord(
                        **{
                            k: v
                            for k, v in raw.items()
                            if k in AuditRecord.__dataclass_fields__
                        }
                    )
                )

        self._last_hash = expected_prev
        return records[-limit:]

    def summary(self) -> dict:
        records = self.read_events(limit=10000)
        by_topic: dict[str, int] = {}
        for r in records:
            by_topic[r.topic] = by_topic.get(r.topic, 0) + 1
        return {
            "total_events": len(records),
            "by_topic": by_topic,
            "last_event": records[-1].to_json() if records else None,
        }
