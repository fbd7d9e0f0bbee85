from __future__ import annotations

import os
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from portal.core.config.io import (
    atomic_write_json,
    read_json_file,
    recover_from_corrupt,
    snapshot_last_known_good,
)
from portal.core.config.models import (
    ApiConfig,
    AppConfig,
    AppFileConfig,
    LoggingConfig,
    SecurityConfig,
    SessionConfig,
    default_config_files,
)
from portal.core.config.paths import ConfigFsPaths
from portal.core.errors import ConfigError


_FILE_MODELS = {
    "app.json": ("app", AppFileConfig),
    "security.json": ("security", SecurityConfig),
    "api.json": ("api", ApiConfig),
    "session.json": ("session", SessionConfig),
    "logging.json": ("logging", LoggingConfig),
}


class ConfigManager:
    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger=None, read_only: bool = False):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self._cfg: Optional[AppConfig] = None

    # ---------- public API ----------
    def load_all(self) -> AppConfig:
        if not self.read_only:
            for d in (self.fs.config_dir, self.fs.backups_dir, self.fs.last_known_good_dir, self.fs.secure_dir):
                os.makedirs(d, exist_ok=True)

        files = self._load_raw_files()
        files = self._ensure_defaults(files)
        cfg = self._validate_all(files)
        self._cfg = cfg

        if not self.read_only:
            snapshot_last_known_good(self.fs.config_dir, self.fs.last_known_good_dir, _FILE_MODELS)
        return cfg

    def get(self) -> AppConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def save_non_sensitive(self, filename: str, data: Dict[str, Any]) -> AppConfig:
        """
        Validate the new file content against the full config set, then write atomically.
        Nothing is written if validation fails.
        """
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if filename not in _FILE_MODELS:
            raise ConfigError(f"Unknown config file {filename!r}.", filename=filename)
        if not isinstance(data, dict):
            raise ConfigError("Config data must be an object.", filename=filename)
        files = {name: getattr(self.get(), attr).model_dump() for name, (attr, _m) in _FILE_MODELS.items()}
        files[filename] = dict(data)
        cfg = self._validate_all(files)
        max_backups = int((self.get().app.backups or {}).get("max_backups_per_file", 10))
        atomic_write_json(os.path.join(self.fs.config_dir, filename), data, self.fs.backups_dir, max_backups=max_backups)
        self._cfg = cfg
        return cfg

    def resolve_path(self, path: str) -> str:
        return self.fs.resolve(path)

    # ---------- internal ----------
    def _load_raw_files(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name in _FILE_MODELS:
            path = os.path.join(self.fs.config_dir, name)
            rr = read_json_file(path)
            if rr.ok:
                out[name] = rr.data
                continue
            if rr.corrupt and not self.read_only:
                data = recover_from_corrupt(path, self.fs.backups_dir, self.fs.last_known_good_dir)
                if self.logger:
                    self.logger.warning(f"Config {name} was corrupt; recovered={data is not None}")
                if data is not None:
                    out[name] = data
        return out

    def _ensure_defaults(self, files: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        defaults = default_config_files()
        out = dict(files)
        for name, data in defaults.items():
            if name in out:
                continue
            if name == "app.json":
                data = dict(data, created_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()))
            out[name] = data
            if not self.read_only:
                atomic_write_json(os.path.join(self.fs.config_dir, name), data, self.fs.backups_dir)
                if self.logger:
                    self.logger.info(f"Created default config {name}")
        return out

    def _validate_all(self, files: Dict[str, Dict[str, Any]]) -> AppConfig:
        parts: Dict[str, Any] = {}
        for name, (attr, model) in _FILE_MODELS.items():
            try:
                parts[attr] = model.model_validate(files.get(name) or {})
            except ValidationError as e:
                raise ConfigError(f"Invalid config file {name}.", filename=name, errors=e.errors(include_url=False)) from e
        return AppConfig(**parts)
