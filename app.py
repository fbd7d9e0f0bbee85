from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import sys
from typing import Optional

from portal.core.config import ConfigFsPaths, ConfigManager
from portal.core.errors import ConfigError, StorageError
from portal.core.logger import setup_logging
from portal.core.portal_app import PortalApp
from portal.core.session.credential_store import MemoryBackend
from portal.core.session.navigation import Screen


class ConsoleRouter:
    """Terminal stand-in for the screen stack: a screen change is a printed line."""

    def __init__(self, logger):  # noqa: ANN001
        self.logger = logger
        self._current: Optional[Screen] = None
        self.pin_required = False

    @property
    def current(self) -> Optional[Screen]:
        return self._current

    def replace(self, screen: Screen, *, pin_required: bool = False) -> None:
        self._current = screen
        self.pin_required = pin_required
        suffix = " (PIN required)" if pin_required else ""
        self.logger.info(f"[screen] {screen.value}{suffix}")


def _prompt(label: str, *, secret: bool = False) -> Optional[str]:
    try:
        return getpass.getpass(label) if secret else input(label)
    except (EOFError, KeyboardInterrupt):
        print()
        return None


async def _password_login(app: PortalApp, username: Optional[str], remember_me: bool) -> bool:
    if not username:
        saved, _remember = await app.tokens.load_remembered()
        username = _prompt(f"Username [{saved}]: " if saved else "Username: ") or saved
    password = _prompt("Password: ", secret=True)
    if username is None or password is None:
        return False
    ok = await app.tokens.login(username, password, remember_me=remember_me)
    if not ok:
        print(app.session.error or "Login failed.")
    return ok


async def _cmd_login(app: PortalApp, args) -> int:  # noqa: ANN001
    ok = await _password_login(app, args.username, bool(args.remember_me))
    if ok:
        print("Signed in.")
    return 0 if ok else 1


async def _cmd_pin_login(app: PortalApp, args) -> int:  # noqa: ANN001
    if not await app.pin.is_pin_login_enabled():
        print("PIN login is not set up.")
        return 1
    pin = _prompt("PIN: ", secret=True)
    if pin is None:
        return 1
    ok = await app.pin.login_with_pin(pin)
    print("Signed in." if ok else "Invalid PIN.")
    return 0 if ok else 1


async def _cmd_create_pin(app: PortalApp, args) -> int:  # noqa: ANN001
    # a fresh process has no credentials in memory; sign in first
    if not app.session.saved_credentials.password:
        if not await _password_login(app, args.username, False):
            return 1
    p1 = _prompt("New 4-digit PIN: ", secret=True)
    p2 = _prompt("Confirm PIN: ", secret=True)
    if p1 is None or p2 is None:
        return 1
    ok = await app.pin.create_pin(p1, p2)
    print("PIN saved." if ok else "PIN not saved (must be 4 digits and match).")
    return 0 if ok else 1


async def _cmd_forget_pin(app: PortalApp, args) -> int:  # noqa: ANN001
    try:
        await app.pin.clear_pin_data()
    except StorageError as e:
        print(e.user_message)
        return 1
    print("PIN removed.")
    return 0


async def _cmd_logout(app: PortalApp, args) -> int:  # noqa: ANN001
    await app.tokens.logout()
    print("Signed out.")
    return 0


async def _cmd_status(app: PortalApp, args) -> int:  # noqa: ANN001
    await app.tokens.restore_session()
    print(json.dumps(await app.status(), indent=2, ensure_ascii=False))
    return 0


async def _cmd_validate(app: PortalApp, args) -> int:  # noqa: ANN001
    ok = await app.tokens.validate_token()
    print("Token valid." if ok else "Token missing or rejected.")
    return 0 if ok else 1


async def _cmd_start(app: PortalApp, args) -> int:  # noqa: ANN001
    await app.start()
    router = app.router
    if router.current == Screen.LOGIN:
        if getattr(router, "pin_required", False):
            pin = _prompt("PIN: ", secret=True)
            if pin is not None and not await app.pin.login_with_pin(pin):
                print("Invalid PIN.")
        else:
            await _password_login(app, None, bool(args.remember_me))
        await app.guard.settle()
    return 0 if router.current == Screen.PORTAL else 1


_COMMANDS = {
    "login": _cmd_login,
    "pin-login": _cmd_pin_login,
    "create-pin": _cmd_create_pin,
    "forget-pin": _cmd_forget_pin,
    "logout": _cmd_logout,
    "status": _cmd_status,
    "validate": _cmd_validate,
    "start": _cmd_start,
}


async def _run(app: PortalApp, args) -> int:  # noqa: ANN001
    try:
        return await _COMMANDS[args.command](app, args)
    finally:
        await app.shutdown()


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Portal session client")
    ap.add_argument("--root", default=".", help="Directory holding config/, secure/ and logs/.")
    ap.add_argument("--ephemeral", action="store_true", help="Keep credentials in memory only (nothing persisted).")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Sign in with username and password.")
    p.add_argument("--username", default=None)
    p.add_argument("--remember-me", action="store_true", help="Remember credentials for auto-login.")

    sub.add_parser("pin-login", help="Sign in with the 4-digit PIN.")

    p = sub.add_parser("create-pin", help="Set up PIN login.")
    p.add_argument("--username", default=None)

    sub.add_parser("forget-pin", help="Remove the PIN; stored credentials stay.")
    sub.add_parser("logout", help="Sign out and remove every stored session key.")
    sub.add_parser("status", help="Print session and PIN status.")
    sub.add_parser("validate", help="Check the stored token with the server.")

    p = sub.add_parser("start", help="Cold start: restore, auto-login, then route.")
    p.add_argument("--remember-me", action="store_true")

    args = ap.parse_args(argv)

    fs = ConfigFsPaths(args.root)
    config_manager = ConfigManager(fs=fs)
    try:
        cfg = config_manager.load_all()
    except ConfigError as e:
        print(f"Config error: {e.user_message} {e.context}", file=sys.stderr)
        return 2
    logger = setup_logging(fs.resolve(cfg.logging.log_dir), cfg.logging.level)
    config_manager.logger = logger

    backend = MemoryBackend() if args.ephemeral else None
    app = PortalApp.from_config(config_manager, router=ConsoleRouter(logger), backend=backend, logger=logger)
    return asyncio.run(_run(app, args))


if __name__ == "__main__":
    sys.exit(main())
