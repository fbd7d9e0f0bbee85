from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from portal.core.redaction import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class PortalError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


class ValidationError(PortalError):
    def __init__(self, user_message: str = "Invalid input.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class NetworkError(PortalError):
    def __init__(self, user_message: str = "Cannot reach the server.", **ctx: Any):
        super().__init__("network_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class AuthRejected(PortalError):
    def __init__(self, user_message: str = "Login failed.", *, status_code: int | None = None, **ctx: Any):
        super().__init__("auth_rejected", user_message, severity=Severity.WARN, recoverable=False, context=ctx)
        self.status_code = status_code


class StorageError(PortalError):
    def __init__(self, user_message: str = "Could not access secure storage.", **ctx: Any):
        super().__init__("storage_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class LoginInProgressError(PortalError):
    def __init__(self, user_message: str = "Another sign-in is already in progress.", **ctx: Any):
        super().__init__("login_in_progress", user_message, severity=Severity.INFO, recoverable=True, context=ctx)


class ConfigError(PortalError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class StateTransitionError(PortalError):
    def __init__(self, user_message: str = "Internal state error.", **ctx: Any):
        super().__init__("state_transition_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)
