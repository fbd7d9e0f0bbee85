from portal.core.config.manager import ConfigManager
from portal.core.config.models import ApiConfig, AppConfig, LoggingConfig, SecurityConfig, SessionConfig
from portal.core.config.paths import ConfigFsPaths

__all__ = [
    "ApiConfig",
    "AppConfig",
    "ConfigFsPaths",
    "ConfigManager",
    "LoggingConfig",
    "SecurityConfig",
    "SessionConfig",
]
