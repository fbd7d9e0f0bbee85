from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import requests

from portal.core.config import AppConfig, ConfigFsPaths, ConfigManager
from portal.core.error_reporter import ErrorReporter, ErrorReporterConfig
from portal.core.logger import get_logger
from portal.core.secure_store import SecureStore
from portal.core.security_events import SecurityAuditLogger
from portal.core.session.api_client import AuthApiClient
from portal.core.session.auto_login import AutoLoginCoordinator
from portal.core.session.credential_store import CredentialStore, KeyValueBackend
from portal.core.session.gate import LoginGate
from portal.core.session.models import Session
from portal.core.session.navigation import NavigationGuard, Router
from portal.core.session.pin import PinService
from portal.core.session.state import AuthStore
from portal.core.session.token_manager import SessionTokenManager


class PortalApp:
    """
    Composition root for the session core.

    Builds one of each component from the loaded config and wires them the
    only way they are meant to be wired: a single AuthStore, a single
    LoginGate shared by every login path, and a navigation guard that only
    sees the read-only Session view.
    """

    def __init__(
        self,
        *,
        cfg: AppConfig,
        fs: ConfigFsPaths,
        router: Router,
        backend: Optional[KeyValueBackend] = None,
        http: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.cfg = cfg
        self.fs = fs
        self.router = router
        self.logger = logger or logging.getLogger("portal")

        log_dir = fs.resolve(cfg.logging.log_dir)
        self.audit = SecurityAuditLogger(path=os.path.join(log_dir, "security.jsonl"), enabled=cfg.logging.security_audit_enabled)
        self.error_reporter = ErrorReporter(
            path=os.path.join(log_dir, "errors.jsonl"),
            cfg=ErrorReporterConfig(include_tracebacks=cfg.logging.include_tracebacks),
        )

        self.secure_store: Optional[SecureStore] = None
        if backend is None:
            sec = cfg.security
            self.secure_store = SecureStore(
                device_key_path=fs.resolve(sec.device_key_path),
                store_path=fs.resolve(sec.secure_store_path),
                meta_path=os.path.join(fs.secure_dir, "store.meta.json"),
                backups_dir=os.path.join(fs.secure_dir, "backups"),
                max_backups=sec.secure_store_backup_keep,
                max_bytes=sec.secure_store_max_bytes,
                read_only=sec.secure_store_read_only,
                audit=self.audit,
            )
            backend = self.secure_store

        self.store = CredentialStore(backend, logger=get_logger("session.store"))
        self.api = AuthApiClient(cfg.api, http=http, logger=get_logger("session.api"))
        self.state = AuthStore(logger=get_logger("session.state"))
        self.gate = LoginGate(wait_seconds=cfg.session.lock_wait_seconds, logger=get_logger("session.gate"))
        self.tokens = SessionTokenManager(
            store=self.store,
            api=self.api,
            state=self.state,
            gate=self.gate,
            audit=self.audit,
            error_reporter=self.error_reporter,
            logger=get_logger("session.token"),
        )
        self.pin = PinService(
            self.tokens,
            pin_login_enabled=cfg.session.pin_login_enabled,
            audit=self.audit,
            logger=get_logger("session.pin"),
        )
        self.auto_login = AutoLoginCoordinator(self.tokens, enabled=cfg.session.auto_login_enabled, logger=get_logger("session.auto_login"))
        self.guard = NavigationGuard(
            self.state.reader(),
            router,
            pin_status=self.pin.is_pin_login_enabled,
            defer_seconds=cfg.session.navigation_defer_seconds,
            logger=get_logger("session.navigation"),
        )

    @classmethod
    def from_config(
        cls,
        config_manager: ConfigManager,
        *,
        router: Router,
        backend: Optional[KeyValueBackend] = None,
        http: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "PortalApp":
        return cls(cfg=config_manager.get(), fs=config_manager.fs, router=router, backend=backend, http=http, logger=logger)

    @property
    def session(self) -> Session:
        return self.state.session

    async def start(self) -> Session:
        """
        Cold start: drop legacy lock flags, rehydrate the persisted token,
        try a silent sign-in, then let the guard pick the first screen.
        """
        await self.tokens.clear_legacy_locks()
        await self.tokens.restore_session()
        await self.auto_login.run()
        self.guard.mount()
        await self.guard.settle()
        self.logger.info(f"Portal started (authenticated={self.session.is_authenticated})")
        return self.session

    async def shutdown(self) -> None:
        self.guard.unmount()
        if self.secure_store is not None:
            self.secure_store.begin_shutdown()
        self.api.close()

    async def status(self) -> Dict[str, Any]:
        username, remember = await self.tokens.load_remembered()
        out: Dict[str, Any] = {
            "authenticated": self.session.is_authenticated,
            "unlocked": self.session.unlocked,
            "pin_state": (await self.pin.state()).value,
            "has_stored_credentials": await self.pin.has_stored_credentials(),
            "saved_username": username,
            "remember_me": remember,
            "user": self.tokens.profile.display_name() if self.tokens.profile else None,
        }
        if self.secure_store is not None:
            out["secure_store"] = self.secure_store.export_public_status()
        return out
