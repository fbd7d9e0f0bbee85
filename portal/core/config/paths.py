from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfigFsPaths:
    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def secure_dir(self) -> str:
        return os.path.join(self.root, "secure")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.root, "logs")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    @property
    def last_known_good_dir(self) -> str:
        return os.path.join(self.backups_dir, "last_known_good")

    # Files
    @property
    def app(self) -> str:
        return os.path.join(self.config_dir, "app.json")

    @property
    def security(self) -> str:
        return os.path.join(self.config_dir, "security.json")

    @property
    def api(self) -> str:
        return os.path.join(self.config_dir, "api.json")

    @property
    def session(self) -> str:
        return os.path.join(self.config_dir, "session.json")

    @property
    def logging(self) -> str:
        return os.path.join(self.config_dir, "logging.json")

    def resolve(self, path: str) -> str:
        """Relative paths in config files are taken from the root, not the cwd."""
        if os.path.isabs(path):
            return path
        return os.path.join(self.root, path)
