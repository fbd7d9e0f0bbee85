from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    created_at: str = "1970-01-01T00:00:00Z"
    backups: Dict[str, Any] = Field(default_factory=lambda: {"max_backups_per_file": 10})


class SecurityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    device_key_path: str = "secure/device.key"
    secure_store_path: str = "secure/credentials.enc"
    secure_store_read_only: bool = False
    secure_store_max_bytes: int = Field(default=65536, ge=1024)
    secure_store_backup_keep: int = Field(default=10, ge=0, le=100)


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    base_url: str = "http://127.0.0.1:5276/api"
    login_path: str = "/auth/login"
    validate_path: str = "/auth/validate"
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    verify_tls: bool = True

    @field_validator("base_url")
    @classmethod
    def _base_url_scheme(cls, v: str) -> str:
        v = str(v).strip()
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("login_path", "validate_path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        v = str(v).strip()
        return v if v.startswith("/") else "/" + v


class SessionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    auto_login_enabled: bool = True
    pin_login_enabled: bool = True
    # upper bound a second caller waits on an in-flight login before giving up
    lock_wait_seconds: float = Field(default=15.0, gt=0, le=300)
    navigation_defer_seconds: float = Field(default=0.0, ge=0, le=5)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    level: str = "INFO"
    security_audit_enabled: bool = True
    include_tracebacks: bool = False

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        v = str(v).upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return v


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    app: AppFileConfig = Field(default_factory=AppFileConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def default_config_files() -> Dict[str, Dict[str, Any]]:
    return {
        "app.json": AppFileConfig().model_dump(),
        "security.json": SecurityConfig().model_dump(),
        "api.json": ApiConfig().model_dump(),
        "session.json": SessionConfig().model_dump(),
        "logging.json": LoggingConfig().model_dump(),
    }
