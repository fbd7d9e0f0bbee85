from __future__ import annotations

import asyncio

import pytest

from tests.helpers.fakes import FakeHttpSession, StubResponse
from tests.helpers.harness import SessionHarness


def _remembered(h: SessionHarness) -> None:
    h.backend.set("stored-username", "ada")
    h.backend.set("stored-password", "pw")
    h.backend.set("remember-me", "true")


def test_auto_login_with_remembered_credentials(harness):
    _remembered(harness)
    assert asyncio.run(harness.auto_login.run()) is True
    assert harness.state.session.is_authenticated is True
    assert harness.http.count("POST") == 1


def test_auto_login_skips_when_already_authenticated(harness):
    _remembered(harness)
    asyncio.run(harness.tokens.login("ada", "pw"))
    assert asyncio.run(harness.auto_login.run()) is True
    assert harness.http.count("POST") == 1


def test_auto_login_needs_remember_me_and_both_credentials(harness):
    harness.backend.set("stored-username", "ada")
    harness.backend.set("remember-me", "true")
    assert asyncio.run(harness.auto_login.run()) is False

    harness.backend.set("stored-password", "pw")
    harness.backend.set("remember-me", "false")
    assert asyncio.run(harness.auto_login.run()) is False
    assert harness.http.calls == []


def test_auto_login_disabled_by_config(tmp_path):
    h = SessionHarness.make(tmp_path=tmp_path, auto_login_enabled=False)
    _remembered(h)
    assert asyncio.run(h.auto_login.run()) is False
    assert h.http.calls == []


def test_auto_login_keeps_remember_me_keys(harness):
    _remembered(harness)
    harness.backend.set("saved-username", "ada")
    asyncio.run(harness.auto_login.run())
    snap = harness.backend.snapshot()
    assert snap["remember-me"] == "true"
    assert snap["saved-username"] == "ada"


def test_concurrent_auto_logins_share_one_request(tmp_path):
    h = SessionHarness.make(tmp_path=tmp_path, http=FakeHttpSession(delay=0.2))
    _remembered(h)

    async def both():
        return await asyncio.gather(h.auto_login.run(), h.auto_login.run())

    assert asyncio.run(both()) == [True, True]
    assert h.http.count("POST") == 1


def test_auto_login_and_password_login_do_not_both_send(tmp_path):
    h = SessionHarness.make(tmp_path=tmp_path, http=FakeHttpSession(delay=0.2))
    _remembered(h)

    async def race():
        return await asyncio.gather(h.auto_login.run(), h.tokens.login("ada", "pw"))

    assert asyncio.run(race()) == [True, True]
    assert h.http.count("POST") == 1


def test_failed_attempt_lets_waiter_proceed(tmp_path):
    replies = iter([StubResponse(401, json_data={"message": "expired"}), StubResponse(200, json_data={"token": "tok-2"})])
    h = SessionHarness.make(tmp_path=tmp_path, http=FakeHttpSession(login=lambda url, **kw: next(replies), delay=0.1))
    _remembered(h)

    async def both():
        return await asyncio.gather(h.auto_login.run(), h.auto_login.run())

    assert sorted(asyncio.run(both())) == [False, True]
    assert h.http.count("POST") == 2
    assert h.state.session.token == "tok-2"
    assert h.gate.locked() is False


def test_gate_released_when_login_raises(harness, monkeypatch):
    _remembered(harness)

    async def boom(*_a, **_k):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(harness.tokens, "authenticate", boom)
    with pytest.raises(RuntimeError):
        asyncio.run(harness.auto_login.run())
    assert harness.gate.locked() is False
