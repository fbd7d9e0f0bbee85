from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from portal.core.errors import StateTransitionError
from portal.core.session.models import SavedCredentials, Session


class AuthAction(str, Enum):
    LOGIN_START = "login_start"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    TOKEN_RESTORED = "token_restored"
    TOKEN_INVALIDATED = "token_invalidated"
    CLEAR_CREDENTIALS = "clear_credentials"
    LOGOUT = "logout"


Listener = Callable[[Session, AuthAction], None]


def _require_token(payload: Dict[str, Any], action: AuthAction) -> str:
    token = payload.get("token")
    if not isinstance(token, str) or not token:
        raise StateTransitionError(f"{action.value} requires a non-empty token", action=action.value)
    return token


def reduce(session: Session, action: AuthAction, payload: Optional[Dict[str, Any]] = None) -> Session:
    """
    Pure transition function. `is_authenticated` is always derived from the
    resulting token so the two can never disagree.
    """
    p = payload or {}
    if action == AuthAction.LOGIN_START:
        update: Dict[str, Any] = {"is_loading": True, "error": None}
    elif action == AuthAction.LOGIN_SUCCESS:
        update = {"is_loading": False, "token": _require_token(p, action), "error": None, "unlocked": True}
        if "username" in p:
            update["saved_credentials"] = SavedCredentials(username=p.get("username"), password=p.get("password"))
    elif action == AuthAction.TOKEN_RESTORED:
        update = {"is_loading": False, "token": _require_token(p, action), "error": None, "unlocked": bool(p.get("unlocked", False))}
    elif action == AuthAction.LOGIN_FAILURE:
        update = {"is_loading": False, "error": str(p.get("error") or "Login failed.")}
        if p.get("clear_token"):
            update.update(token=None, unlocked=False)
    elif action == AuthAction.TOKEN_INVALIDATED:
        # only drop the token the caller saw rejected; a newer login wins
        rejected = p.get("token")
        if rejected is not None and rejected != session.token:
            return session
        update = {"token": None, "unlocked": False}
    elif action == AuthAction.CLEAR_CREDENTIALS:
        update = {"saved_credentials": SavedCredentials()}
    elif action == AuthAction.LOGOUT:
        return Session()
    else:
        raise StateTransitionError(f"Unknown auth action {action!r}")

    merged = session.model_copy(update=update)
    return merged.model_copy(update={"is_authenticated": merged.token is not None})


@dataclass
class _Sub:
    listener: Listener
    priority: int


class SessionReader:
    """Read-only view handed to observers (navigation guard, auto-login, screens)."""

    def __init__(self, store: "AuthStore"):
        self._store = store

    @property
    def session(self) -> Session:
        return self._store.session

    def subscribe(self, listener: Listener, priority: int = 50) -> Callable[[], None]:
        return self._store.subscribe(listener, priority=priority)


class AuthStore:
    """
    Owned, injectable container for the process Session.

    - `dispatch` applies `reduce` and notifies listeners synchronously, in
      priority order, after the new snapshot is in place
    - listener failures are isolated and logged
    - only the token manager and PIN service hold the store itself; everyone
      else gets `reader()`
    """

    def __init__(self, *, initial: Optional[Session] = None, logger: Optional[logging.Logger] = None):
        self._session = initial or Session()
        self._subs: List[_Sub] = []
        self._lock = threading.Lock()
        self.logger = logger or logging.getLogger("portal.session.state")

    @property
    def session(self) -> Session:
        return self._session

    def reader(self) -> SessionReader:
        return SessionReader(self)

    def dispatch(self, action: AuthAction, payload: Optional[Dict[str, Any]] = None) -> Session:
        with self._lock:
            old = self._session
            new = reduce(old, action, payload)
            self._session = new
            subs = list(self._subs)
        if new != old:
            self.logger.debug(f"auth state {action.value}: authenticated={new.is_authenticated} loading={new.is_loading}")
        for s in subs:
            try:
                s.listener(new, action)
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"Auth state listener {getattr(s.listener, '__name__', 'listener')} failed: {e}")
        return new

    def subscribe(self, listener: Listener, priority: int = 50) -> Callable[[], None]:
        if not callable(listener):
            raise ValueError("listener must be callable")
        sub = _Sub(listener=listener, priority=int(priority))
        with self._lock:
            self._subs.append(sub)
            self._subs.sort(key=lambda s: s.priority)

        def unsubscribe() -> None:
            with self._lock:
                self._subs = [s for s in self._subs if s is not sub]

        return unsubscribe

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)
