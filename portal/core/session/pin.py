from __future__ import annotations

import logging
import secrets
from enum import Enum
from typing import Any, Dict, Optional

from portal.core.errors import LoginInProgressError, StorageError
from portal.core.security_events import SecurityAuditLogger
from portal.core.session.keys import StorageKey
from portal.core.session.models import PinRecord, is_valid_pin
from portal.core.session.token_manager import SessionTokenManager
from portal.core.trace import trace_context


class PinState(str, Enum):
    DISABLED = "disabled"
    ENABLED = "enabled"
    AWAITING_VERIFICATION = "awaiting_verification"
    UNLOCKED = "unlocked"


class PinService:
    """
    4-digit PIN as a local gate over cached credentials.

    The PIN never leaves the device and is never sent to the server. A correct
    PIN releases the stored username/password (or the persisted token) to the
    token manager; everything network-facing happens there.
    """

    def __init__(
        self,
        tokens: SessionTokenManager,
        *,
        pin_login_enabled: bool = True,
        audit: Optional[SecurityAuditLogger] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.tokens = tokens
        self.store = tokens.store
        self.pin_login_enabled = bool(pin_login_enabled)
        self.audit = audit
        self.logger = logger or logging.getLogger("portal.session.pin")

    # ---------- record ----------
    async def save_pin(self, pin: str) -> bool:
        if not is_valid_pin(pin):
            self.logger.info("PIN rejected: must be exactly 4 digits")
            return False
        record = PinRecord(pin=pin, enabled=True)
        with trace_context() as trace_id:
            try:
                await self.store.set(StorageKey.USER_PIN, record.pin)
                await self.store.set_bool(StorageKey.PIN_ENABLED, record.enabled)
            except StorageError as e:
                self._audit(trace_id, "auth.pin_saved", "storage_failed", severity="ERROR", details=e.context)
                return False
            self._audit(trace_id, "auth.pin_saved", "ok")
        self.logger.info("PIN saved")
        return True

    async def load_record(self) -> Optional[PinRecord]:
        stored = await self.store.get(StorageKey.USER_PIN)
        if not stored or not is_valid_pin(stored):
            return None
        return PinRecord(pin=stored, enabled=await self.store.get_bool(StorageKey.PIN_ENABLED))

    async def verify_pin(self, entered: Any) -> bool:
        record = await self.load_record()
        if record is None or not isinstance(entered, str):
            return False
        ok = secrets.compare_digest(entered.encode("utf-8"), record.pin.encode("utf-8"))
        self._audit(None, "auth.pin_verify", "ok" if ok else "mismatch", severity="INFO" if ok else "WARN")
        return ok

    async def clear_pin_data(self) -> None:
        """Forget the PIN and disable PIN login. Stored credentials stay."""
        with trace_context() as trace_id:
            try:
                await self.store.remove(StorageKey.USER_PIN)
                await self.store.set_bool(StorageKey.PIN_ENABLED, False)
            except StorageError as e:
                self._audit(trace_id, "auth.pin_cleared", "storage_failed", severity="ERROR", details=e.context)
                raise
            self._audit(trace_id, "auth.pin_cleared", "ok")
        self.logger.info("PIN cleared")

    # ---------- flows ----------
    async def create_pin(self, pin: str, confirm_pin: str) -> bool:
        """
        PIN-creation dialog. Needs a signed-in Session that still holds the
        credentials it signed in with; those are cached for later PIN login.
        """
        if not self.pin_login_enabled:
            self.logger.info("PIN login disabled by configuration")
            return False
        if pin != confirm_pin or not is_valid_pin(pin):
            return False
        session = self.tokens.session
        creds = session.saved_credentials
        if not session.is_authenticated or not creds.username or not creds.password:
            self.logger.info("PIN creation needs a password sign-in first")
            return False
        try:
            await self.store.set(StorageKey.STORED_USERNAME, creds.username)
            await self.store.set(StorageKey.STORED_PASSWORD, creds.password)
        except StorageError as e:
            self.logger.error(f"Credentials not cached for PIN login: {e.context}")
            # a partial write must not leave a mixed username/password pair
            await self.tokens.discard_stored_credentials()
            return False
        return await self.save_pin(pin)

    async def login_with_pin(self, entered: str) -> bool:
        """
        Wrong PIN: False, nothing else happens. Correct PIN: adopt the
        persisted token when there is one, otherwise sign in again with the
        cached credentials.
        """
        if not self.pin_login_enabled:
            return False
        if not await self.verify_pin(entered):
            return False
        with trace_context():
            creds = await self.tokens.stored_credentials()
            if creds is None:
                self.logger.warning("PIN accepted but no stored credentials; password sign-in required")
                return False
            try:
                async with self.tokens.single_flight("pin-login") as ticket:
                    session = self.tokens.session
                    if ticket.waited and session.is_authenticated and session.unlocked:
                        return True
                    token = await self.tokens.persisted_token()
                    if token:
                        self.tokens.adopt_token(token, creds)
                        self.logger.info("PIN accepted; persisted session adopted")
                        return True
                    return await self.tokens.authenticate(creds.username, creds.password)
            except LoginInProgressError as e:
                self.logger.warning(f"pin-login: {e.user_message}")
                return False

    # ---------- queries ----------
    async def is_pin_login_enabled(self) -> bool:
        if not self.pin_login_enabled:
            return False
        record = await self.load_record()
        return record is not None and record.enabled

    async def has_stored_credentials(self) -> bool:
        return (await self.tokens.stored_credentials()) is not None

    async def get_saved_username(self) -> Optional[str]:
        return await self.store.get(StorageKey.STORED_USERNAME)

    async def state(self) -> PinState:
        if not await self.is_pin_login_enabled():
            return PinState.DISABLED
        session = self.tokens.session
        if not session.is_authenticated:
            return PinState.ENABLED
        return PinState.UNLOCKED if session.unlocked else PinState.AWAITING_VERIFICATION

    def _audit(self, trace_id: Optional[str], event: str, outcome: str, *, severity: str = "INFO", details: Optional[Dict[str, Any]] = None) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(trace_id=trace_id or "pin", severity=severity, event=event, endpoint="pin", outcome=outcome, details=details)
        except OSError as e:
            self.logger.warning(f"Security audit write failed: {e}")
