from __future__ import annotations

import contextlib
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from portal.core.error_reporter import ErrorReporter
from portal.core.errors import AuthRejected, LoginInProgressError, NetworkError, PortalError, StorageError, ValidationError
from portal.core.security_events import SecurityAuditLogger
from portal.core.session.api_client import AuthApiClient, ValidateResult
from portal.core.session.credential_store import CredentialStore
from portal.core.session.gate import GateTicket, LoginGate
from portal.core.session.keys import CREDENTIAL_KEYS, LEGACY_LOCK_KEYS, LOGOUT_KEYS, StorageKey
from portal.core.session.models import LoginResponse, Session, StoredCredentials, UserProfile
from portal.core.session.state import AuthAction, AuthStore
from portal.core.trace import current_trace_id, trace_context


class SessionTokenManager:
    """
    Owns the bearer token and the credential writes that go with it.

    Every path that can end in a login request (password, PIN, auto-login)
    runs `authenticate` while holding the shared LoginGate, so at most one
    request is in flight per process. A caller that had to wait re-checks the
    Session before doing anything: if the earlier flow already signed in, the
    wait counts as success and no second request goes out.

    Persisted token and Session token agree after every completed call:
    - success writes the token before the Session changes
    - a refusal removes the persisted token and clears the Session token
    - a network failure leaves both untouched
    """

    def __init__(
        self,
        *,
        store: CredentialStore,
        api: AuthApiClient,
        state: AuthStore,
        gate: LoginGate,
        audit: Optional[SecurityAuditLogger] = None,
        error_reporter: Optional[ErrorReporter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.api = api
        self.state = state
        self.gate = gate
        self.audit = audit
        self.error_reporter = error_reporter
        self.logger = logger or logging.getLogger("portal.session.token")
        self._profile: Optional[UserProfile] = None

    @property
    def session(self) -> Session:
        return self.state.session

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._profile

    # ---------- single flight ----------
    @contextlib.asynccontextmanager
    async def single_flight(self, owner: str) -> AsyncIterator[GateTicket]:
        async with self.gate.hold(owner) as ticket:
            yield ticket

    # ---------- password login ----------
    async def login(self, username: str, password: str, *, remember_me: bool = False) -> bool:
        """
        Interactive sign-in. Returns True when the Session ends authenticated.
        Failures are reported through `Session.error`, never raised.
        """
        with trace_context() as trace_id:
            try:
                _require_fields(username, password)
            except ValidationError as e:
                self.state.dispatch(AuthAction.LOGIN_FAILURE, {"error": e.user_message})
                self._audit(trace_id, "auth.login", "rejected", severity="WARN", details={"reason": e.code})
                return False
            try:
                async with self.single_flight("login") as ticket:
                    if ticket.waited and self.session.is_authenticated:
                        self.logger.info("login: in-flight sign-in already succeeded; reusing its session")
                        return True
                    return await self.authenticate(username, password, remember_me=remember_me)
            except LoginInProgressError as e:
                self.logger.warning(f"login: {e.user_message}")
                self._audit(trace_id, "auth.login", "busy", severity="WARN", details={"holder": e.context.get("holder")})
                return False

    async def authenticate(self, username: str, password: str, *, remember_me: Optional[bool] = None) -> bool:
        """
        One login request plus its persistence. The caller must hold the gate.

        `remember_me=None` leaves the remember-me keys as they are (PIN and
        auto-login reuse credentials that are already stored).
        """
        trace_id = current_trace_id("auth") or "auth"
        self.state.dispatch(AuthAction.LOGIN_START)
        try:
            resp = await self.api.login(username, password)
        except AuthRejected as e:
            await self._drop_persisted_token()
            self.state.dispatch(AuthAction.LOGIN_FAILURE, {"error": e.user_message, "clear_token": True})
            self._audit(trace_id, "auth.login", "denied", severity="WARN", details={"username": username, "status_code": e.status_code})
            return False
        except NetworkError as e:
            self.state.dispatch(AuthAction.LOGIN_FAILURE, {"error": e.user_message})
            self._audit(trace_id, "auth.login", "unreachable", severity="WARN", details={"username": username, **e.context})
            return False
        except Exception as e:  # noqa: BLE001
            pe = self._report(e, trace_id=trace_id, subsystem="auth_api")
            self.state.dispatch(AuthAction.LOGIN_FAILURE, {"error": pe.user_message})
            return False

        try:
            await self._persist_login(resp, username, password, remember_me)
        except StorageError as e:
            self._report(e, trace_id=trace_id, subsystem="credential_store")
            self.state.dispatch(AuthAction.LOGIN_FAILURE, {"error": e.user_message, "clear_token": True})
            self._audit(trace_id, "auth.login", "storage_failed", severity="ERROR", details={"username": username, **e.context})
            return False

        self._profile = resp.user_profile
        self.state.dispatch(AuthAction.LOGIN_SUCCESS, {"token": resp.token, "username": username, "password": password})
        self._audit(trace_id, "auth.login", "ok", details={"username": username, "remember_me": remember_me})
        self.logger.info(f"Signed in as {username}")
        return True

    async def _persist_login(self, resp: LoginResponse, username: str, password: str, remember_me: Optional[bool]) -> None:
        # token first: a failure here aborts the login with nothing half-written
        await self.store.remove(StorageKey.SESSION_TOKEN)
        await self.store.set(StorageKey.SESSION_TOKEN, resp.token)

        if resp.user_profile is not None:
            try:
                await self.store.set_json(StorageKey.USER_PROFILE, resp.user_profile.model_dump(mode="json"))
            except StorageError as e:
                self.logger.warning(f"User profile not persisted: {e.context}")

        if remember_me is True:
            try:
                await self.store.set(StorageKey.STORED_USERNAME, username)
                await self.store.set(StorageKey.STORED_PASSWORD, password)
                await self.store.set_bool(StorageKey.REMEMBER_ME, True)
                await self.store.set(StorageKey.SAVED_USERNAME, username)
            except StorageError:
                await self._drop_persisted_token()
                await self.discard_stored_credentials()
                raise
        elif remember_me is False:
            try:
                await self.store.set_bool(StorageKey.REMEMBER_ME, False)
                await self.store.remove(StorageKey.SAVED_USERNAME)
            except StorageError as e:
                self.logger.warning(f"Remember-me preference not persisted: {e.context}")

    async def _drop_persisted_token(self) -> None:
        try:
            await self.store.remove(StorageKey.SESSION_TOKEN)
        except StorageError as e:
            self.logger.error(f"Could not remove persisted token: {e.context}")

    async def discard_stored_credentials(self) -> None:
        """Remove the cached credential pair and clear remember-me. Failures are logged, never raised."""
        try:
            await self.store.remove_many(CREDENTIAL_KEYS)
        except StorageError as e:
            self.logger.error(f"Stored credentials not discarded: {e.context}")
        try:
            await self.store.set_bool(StorageKey.REMEMBER_ME, False)
        except StorageError as e:
            self.logger.error(f"Remember-me not reset: {e.context}")

    # ---------- token adoption (PIN short-circuit, cold start) ----------
    def adopt_token(self, token: str, credentials: StoredCredentials) -> Session:
        """Accept an already persisted token as an interactive sign-in."""
        return self.state.dispatch(
            AuthAction.LOGIN_SUCCESS,
            {"token": token, "username": credentials.username, "password": credentials.password},
        )

    async def restore_session(self) -> bool:
        """
        Rehydrate Session from the persisted token at cold start. The restored
        session is authenticated but not unlocked.
        """
        token = await self.persisted_token()
        if not token:
            return False
        self._profile = await self.load_profile()
        self.state.dispatch(AuthAction.TOKEN_RESTORED, {"token": token, "unlocked": False})
        self.logger.info("Session restored from persisted token")
        return True

    async def clear_legacy_locks(self) -> None:
        """Delete lock flags left behind by older clients. They are never read."""
        try:
            await self.store.remove_many(LEGACY_LOCK_KEYS)
        except StorageError as e:
            self.logger.warning(f"Legacy lock flags not cleared: {e.context}")

    # ---------- validation ----------
    async def validate_token(self) -> bool:
        """
        Ask the server whether the persisted token is still good. No token
        means no request. Only a 401 clears the token; other failures leave
        it for the next attempt.
        """
        token = await self.persisted_token()
        if not token:
            return False
        result: ValidateResult = await self.api.validate(token)
        if result.ok:
            self._audit(current_trace_id("auth") or "auth", "auth.token_validate", "ok")
            return True
        if result.unauthorized:
            await self.handle_unauthorized(token)
        else:
            self.logger.info(f"Token validation inconclusive: {result.detail}")
        return False

    async def handle_unauthorized(self, token: str) -> None:
        """401 hook for authorized calls. Drops the rejected token only."""
        current = await self.persisted_token()
        if current == token:
            await self._drop_persisted_token()
        self.state.dispatch(AuthAction.TOKEN_INVALIDATED, {"token": token})
        self._audit(current_trace_id("auth") or "auth", "auth.token_validate", "invalidated", severity="WARN")

    async def persisted_token(self) -> Optional[str]:
        return await self.store.get(StorageKey.SESSION_TOKEN)

    async def token_provider(self) -> Optional[str]:
        return self.session.token or await self.persisted_token()

    async def authorized_json(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self.api.request_json(
            method,
            path,
            token_provider=self.token_provider,
            on_unauthorized=self.handle_unauthorized,
            **kwargs,
        )

    # ---------- stored credentials ----------
    async def stored_credentials(self) -> Optional[StoredCredentials]:
        username = await self.store.get(StorageKey.STORED_USERNAME)
        password = await self.store.get(StorageKey.STORED_PASSWORD)
        if not username or not password:
            return None
        remember = await self.store.get_bool(StorageKey.REMEMBER_ME)
        return StoredCredentials(username=username, password=password, remember_me=remember)

    async def load_remembered(self) -> Tuple[Optional[str], bool]:
        """(saved username, remember-me flag) for pre-filling the login form."""
        remember = await self.store.get_bool(StorageKey.REMEMBER_ME)
        username = await self.store.get(StorageKey.SAVED_USERNAME) if remember else None
        return username, remember

    async def load_profile(self) -> Optional[UserProfile]:
        raw = await self.store.get_json(StorageKey.USER_PROFILE)
        if not isinstance(raw, dict):
            return None
        try:
            return UserProfile.model_validate(raw)
        except PydanticValidationError:
            self.logger.warning("Persisted user profile is invalid; ignoring")
            return None

    async def forget_credentials(self) -> None:
        """Remove stored credentials and the remember-me preference."""
        with trace_context() as trace_id:
            await self.store.remove_many((*CREDENTIAL_KEYS, StorageKey.SAVED_USERNAME))
            await self.store.set_bool(StorageKey.REMEMBER_ME, False)
            self.state.dispatch(AuthAction.CLEAR_CREDENTIALS)
            self._audit(trace_id, "auth.credentials", "forgotten")

    # ---------- logout ----------
    async def logout(self) -> None:
        """Remove every session key and reset Session. Storage failures are logged, never raised."""
        with trace_context() as trace_id:
            try:
                await self.store.remove_many(LOGOUT_KEYS)
            except StorageError as e:
                self.logger.error(f"Logout left keys behind: {e.context}")
                self._audit(trace_id, "auth.logout", "partial", severity="ERROR", details=e.context)
            else:
                self._audit(trace_id, "auth.logout", "ok")
            self._profile = None
            self.state.dispatch(AuthAction.LOGOUT)
            self.logger.info("Signed out")

    # ---------- reporting ----------
    def _audit(self, trace_id: str, event: str, outcome: str, *, severity: str = "INFO", details: Optional[Dict[str, Any]] = None) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(trace_id=trace_id, severity=severity, event=event, endpoint="session", outcome=outcome, details=details)
        except OSError as e:
            self.logger.warning(f"Security audit write failed: {e}")

    def _report(self, exc: BaseException, *, trace_id: str, subsystem: str) -> PortalError:
        if self.error_reporter is not None:
            return self.error_reporter.report_exception(exc, trace_id=trace_id, subsystem=subsystem)
        if isinstance(exc, PortalError):
            return exc
        self.logger.exception(f"{subsystem} failed")
        return PortalError("unknown_error", "An unexpected error occurred.")


def _require_fields(username: Any, password: Any) -> None:
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("Please enter your username and password.", field="username")
    if not isinstance(password, str) or not password:
        raise ValidationError("Please enter your username and password.", field="password")
