from __future__ import annotations

from typing import Any, Dict


REDACT_KEYS = {
    "password",
    "stored_password",
    "pin",
    "user_pin",
    "confirm_pin",
    "secret",
    "token",
    "access_token",
    "accesstoken",
    "authorization",
    "device_key",
    "key_bytes",
}

REDACTED = "***REDACTED***"


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            if str(k).lower().replace("-", "_") in REDACT_KEYS:
                out[k] = REDACTED
            else:
                out[k] = _redact(v)
        return out
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


def redact(obj: Any) -> Any:
    return _redact(obj)
