from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from portal.core.redaction import redact


@dataclass(frozen=True)
class SecurityAuditLogger:
    """
    Append-only JSONL audit of credential events (login, PIN, logout, store writes).

    Never records secrets: details pass through `redact` and callers only supply
    usernames, outcomes and error codes.
    """

    path: str = os.path.join("logs", "security.jsonl")
    enabled: bool = True
    _lock: threading.Lock = field(default_factory=threading.Lock, compare=False, repr=False)

    def log(
        self,
        *,
        trace_id: str,
        severity: str,
        event: str,
        endpoint: str,
        outcome: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.enabled:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "trace_id": trace_id,
            "severity": severity,
            "event": event,
            "endpoint": endpoint,
            "outcome": outcome,
            "details": redact(details or {}),
        }
        line = json.dumps(payload, ensure_ascii=False)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read_all(self) -> list[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        out: list[Dict[str, Any]] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    out.append(json.loads(line))
        return out
