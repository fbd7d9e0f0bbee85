from __future__ import annotations

from enum import Enum


class StorageKey(str, Enum):
    SESSION_TOKEN = "session-token"
    USER_PROFILE = "user-profile"
    PIN_ENABLED = "pin-enabled"
    USER_PIN = "user-pin"
    STORED_USERNAME = "stored-username"
    STORED_PASSWORD = "stored-password"
    REMEMBER_ME = "remember-me"
    SAVED_USERNAME = "saved-username"
    # Written by older clients as advisory lock flags. Only ever deleted now.
    LEGACY_LOGIN_IN_PROGRESS = "login-in-progress"
    LEGACY_AUTO_LOGIN_IN_PROGRESS = "auto-login-in-progress"


PIN_KEYS = (StorageKey.PIN_ENABLED, StorageKey.USER_PIN)

CREDENTIAL_KEYS = (StorageKey.STORED_USERNAME, StorageKey.STORED_PASSWORD)

REMEMBER_ME_KEYS = (StorageKey.REMEMBER_ME, StorageKey.SAVED_USERNAME)

LEGACY_LOCK_KEYS = (StorageKey.LEGACY_LOGIN_IN_PROGRESS, StorageKey.LEGACY_AUTO_LOGIN_IN_PROGRESS)

LOGOUT_KEYS = (
    StorageKey.SESSION_TOKEN,
    StorageKey.USER_PROFILE,
    *PIN_KEYS,
    *REMEMBER_ME_KEYS,
    *CREDENTIAL_KEYS,
    *LEGACY_LOCK_KEYS,
)
