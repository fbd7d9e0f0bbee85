from __future__ import annotations

import logging
from typing import Optional

from portal.core.errors import LoginInProgressError
from portal.core.session.token_manager import SessionTokenManager
from portal.core.trace import trace_context


class AutoLoginCoordinator:
    """Silent sign-in at startup from remembered credentials."""

    def __init__(self, tokens: SessionTokenManager, *, enabled: bool = True, logger: Optional[logging.Logger] = None):
        self.tokens = tokens
        self.enabled = bool(enabled)
        self.logger = logger or logging.getLogger("portal.session.auto_login")

    async def run(self) -> bool:
        if self.tokens.session.is_authenticated:
            return True
        if not self.enabled:
            return False
        with trace_context():
            creds = await self.tokens.stored_credentials()
            if creds is None or not creds.remember_me:
                self.logger.debug("Auto-login skipped: nothing remembered")
                return False
            try:
                async with self.tokens.single_flight("auto-login"):
                    # whoever held the gate before us may have signed in already
                    if self.tokens.session.is_authenticated:
                        return True
                    ok = await self.tokens.authenticate(creds.username, creds.password)
            except LoginInProgressError as e:
                self.logger.warning(f"auto-login: {e.user_message}")
                return False
        self.logger.info("Auto-login succeeded" if ok else "Auto-login failed")
        return ok
