from __future__ import annotations

import asyncio
import os

import pytest

from portal.core.portal_app import PortalApp
from portal.core.secure_store import SecretUnavailable
from portal.core.session.navigation import Screen

from tests.helpers.fakes import FakeHttpSession, RecordingRouter
from tests.helpers.log_assertions import assert_secret_absent, read_jsonl


def _app(config_manager, http=None) -> PortalApp:  # noqa: ANN001
    return PortalApp.from_config(config_manager, router=RecordingRouter(), http=http or FakeHttpSession())


def test_cold_start_with_nothing_stored_routes_to_login(config_manager):
    app = _app(config_manager)
    session = asyncio.run(app.start())
    assert session.is_authenticated is False
    assert app.router.current == Screen.LOGIN
    assert app.api.http.calls == []


def test_token_survives_restart(config_manager):
    first = _app(config_manager)
    assert asyncio.run(first.tokens.login("ada", "pw")) is True
    asyncio.run(first.shutdown())

    second = _app(config_manager)
    session = asyncio.run(second.start())
    assert session.token == "tok-1"
    assert second.router.current == Screen.PORTAL
    assert second.api.http.calls == []


def test_remembered_credentials_auto_login_after_token_loss(config_manager):
    first = _app(config_manager)
    asyncio.run(first.tokens.login("ada", "pw", remember_me=True))
    asyncio.run(first.store.remove("session-token"))
    asyncio.run(first.shutdown())

    http = FakeHttpSession()
    second = _app(config_manager, http=http)
    session = asyncio.run(second.start())
    assert session.is_authenticated is True
    assert http.count("POST") == 1
    assert second.router.current == Screen.PORTAL


def test_pin_restart_requires_pin_then_unlocks(config_manager):
    first = _app(config_manager)
    asyncio.run(first.tokens.login("ada", "pw"))
    assert asyncio.run(first.pin.create_pin("8642", "8642")) is True
    asyncio.run(first.shutdown())

    second = _app(config_manager)

    async def go():
        await second.start()
        prompted = (second.router.current, second.router.pin_required)
        assert await second.pin.login_with_pin("8642") is True
        await second.guard.settle()
        return prompted

    assert asyncio.run(go()) == (Screen.LOGIN, True)
    assert second.router.current == Screen.PORTAL


def test_start_clears_legacy_lock_flags(config_manager):
    first = _app(config_manager)
    first.secure_store.set("login-in-progress", "true")
    first.secure_store.set("auto-login-in-progress", "true")

    second = _app(config_manager)
    asyncio.run(second.start())
    assert second.secure_store.list_keys() == []


def test_status_reports_without_secrets(config_manager):
    app = _app(config_manager)
    asyncio.run(app.tokens.login("ada", "pw-secret", remember_me=True))
    st = asyncio.run(app.status())
    assert st["authenticated"] is True
    assert st["saved_username"] == "ada"
    assert st["pin_state"] == "disabled"
    assert st["secure_store"]["mode"] == "READY"
    assert_secret_absent([st], "pw-secret", "tok-1")


def test_credentials_are_encrypted_at_rest(config_manager):
    app = _app(config_manager)
    asyncio.run(app.tokens.login("ada", "pw-secret", remember_me=True))
    with open(app.secure_store.store_path, "r", encoding="utf-8") as f:
        raw = f.read()
    assert "pw-secret" not in raw
    assert "tok-1" not in raw
    audit_path = os.path.join(config_manager.fs.logs_dir, "security.jsonl")
    assert_secret_absent(read_jsonl(audit_path), "pw-secret", "tok-1")


def test_shutdown_closes_http_and_blocks_writes(config_manager):
    app = _app(config_manager)
    asyncio.run(app.shutdown())
    assert app.api.http.closed is True
    with pytest.raises(SecretUnavailable):
        app.secure_store.set("a", "b")
