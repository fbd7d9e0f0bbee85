from portal.core.session.api_client import AuthApiClient, ValidateResult
from portal.core.session.auto_login import AutoLoginCoordinator
from portal.core.session.credential_store import CredentialStore, KeyValueBackend, MemoryBackend
from portal.core.session.gate import LoginGate
from portal.core.session.keys import StorageKey
from portal.core.session.models import LoginResponse, PinRecord, Session, StoredCredentials, UserProfile
from portal.core.session.navigation import NavigationDecision, NavigationGuard, Router, Screen
from portal.core.session.pin import PinService, PinState
from portal.core.session.state import AuthAction, AuthStore, SessionReader
from portal.core.session.token_manager import SessionTokenManager

__all__ = [
    "AuthAction",
    "AuthApiClient",
    "AuthStore",
    "AutoLoginCoordinator",
    "CredentialStore",
    "KeyValueBackend",
    "LoginGate",
    "LoginResponse",
    "MemoryBackend",
    "NavigationDecision",
    "NavigationGuard",
    "PinRecord",
    "PinService",
    "PinState",
    "Router",
    "Screen",
    "Session",
    "SessionReader",
    "SessionTokenManager",
    "StorageKey",
    "StoredCredentials",
    "UserProfile",
    "ValidateResult",
]
