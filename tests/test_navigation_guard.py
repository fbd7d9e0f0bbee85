from __future__ import annotations

import asyncio

from portal.core.session.models import Session
from portal.core.session.navigation import NavigationGuard, Screen, decide

from tests.helpers.fakes import RecordingRouter, StubResponse
from tests.helpers.harness import SessionHarness


def _guard(h: SessionHarness, router: RecordingRouter, *, defer_seconds: float = 0.0) -> NavigationGuard:
    return NavigationGuard(h.state.reader(), router, pin_status=h.pin.is_pin_login_enabled, defer_seconds=defer_seconds)


def test_decision_table():
    signed_out = Session()
    signed_in = Session(is_authenticated=True, token="t")
    unlocked = Session(is_authenticated=True, token="t", unlocked=True)

    assert decide(signed_out, pin_active=True).target == Screen.LOGIN
    assert decide(signed_out, pin_active=False).target == Screen.LOGIN
    d = decide(signed_in, pin_active=True)
    assert d.target == Screen.LOGIN and d.pin_required is True
    assert decide(unlocked, pin_active=True).target == Screen.PORTAL
    assert decide(signed_in, pin_active=False).target == Screen.PORTAL


def test_first_decision_waits_one_tick(harness):
    router = RecordingRouter()
    guard = _guard(harness, router)

    async def go():
        guard.mount()
        assert router.history == []
        await guard.settle()

    asyncio.run(go())
    assert router.history == [(Screen.LOGIN, False)]


def test_deferred_mount(harness):
    router = RecordingRouter()
    guard = _guard(harness, router, defer_seconds=0.05)

    async def go():
        guard.mount()
        await asyncio.sleep(0.01)
        seen_early = list(router.history)
        await guard.settle()
        return seen_early

    assert asyncio.run(go()) == []
    assert router.current == Screen.LOGIN


def test_login_moves_to_portal_and_logout_back(harness):
    router = RecordingRouter()
    guard = _guard(harness, router)

    async def go():
        guard.mount()
        await guard.settle()
        await harness.tokens.login("ada", "pw")
        await guard.settle()
        at_portal = router.current
        await harness.tokens.logout()
        await guard.settle()
        guard.unmount()
        return at_portal

    assert asyncio.run(go()) == Screen.PORTAL
    assert router.current == Screen.LOGIN
    assert [s for s, _p in router.history] == [Screen.LOGIN, Screen.PORTAL, Screen.LOGIN]


def test_replace_only_on_target_change(harness):
    router = RecordingRouter(current=Screen.LOGIN)
    guard = _guard(harness, router)

    async def go():
        guard.mount()
        await guard.settle()
        # failed login: state changes twice, target stays login
        harness.http.login = StubResponse(401)
        await harness.tokens.login("ada", "bad")
        await guard.settle()

    asyncio.run(go())
    assert router.history == []
    assert guard.last_decision.target == Screen.LOGIN


def test_signed_in_user_stays_on_other_protected_screens(harness):
    router = RecordingRouter()
    guard = _guard(harness, router)

    async def go():
        guard.mount()
        await harness.tokens.login("ada", "pw")
        await guard.settle()
        router.current = Screen.HELPDESK
        # state changes that leave authentication as it was
        await harness.tokens.forget_credentials()
        await guard.settle()
        await harness.tokens.handle_unauthorized("some-older-token")
        await guard.settle()

    asyncio.run(go())
    assert router.current == Screen.HELPDESK
    assert router.history[-1] == (Screen.PORTAL, False)
    assert guard.last_decision.target == Screen.PORTAL


def test_mount_on_protected_screen_keeps_it_when_signed_in(harness):
    asyncio.run(harness.tokens.login("ada", "pw"))
    router = RecordingRouter(current=Screen.PROFILE)
    guard = _guard(harness, router)

    async def go():
        guard.mount()
        await guard.settle()

    asyncio.run(go())
    assert router.history == []
    assert router.current == Screen.PROFILE


def test_pin_and_restart_routes_to_pin_verification(harness):
    # first run: password login plus PIN creation
    asyncio.run(harness.tokens.login("ada", "pw"))
    assert asyncio.run(harness.pin.create_pin("1357", "1357")) is True

    # restart: fresh state, same storage
    again = SessionHarness.make(backend=harness.backend)
    router = RecordingRouter()
    guard = _guard(again, router)

    async def go():
        await again.tokens.restore_session()
        guard.mount()
        await guard.settle()
        pin_prompted = (router.current, router.pin_required)
        assert await again.pin.login_with_pin("1357") is True
        await guard.settle()
        return pin_prompted

    assert asyncio.run(go()) == (Screen.LOGIN, True)
    assert router.current == Screen.PORTAL
    assert again.http.calls == []


def test_restart_without_pin_goes_straight_to_portal(harness):
    harness.backend.set("session-token", "tok-r")
    router = RecordingRouter()
    guard = _guard(harness, router)

    async def go():
        await harness.tokens.restore_session()
        guard.mount()
        await guard.settle()

    asyncio.run(go())
    assert router.current == Screen.PORTAL


def test_back_from_protected_screen_redirects_when_signed_out(harness):
    router = RecordingRouter(current=Screen.HELPDESK)
    guard = _guard(harness, router)
    assert guard.handle_back(Screen.HELPDESK) is True
    assert router.current == Screen.LOGIN
    assert guard.handle_back(Screen.LOGIN) is False


def test_back_allowed_when_signed_in(harness):
    asyncio.run(harness.tokens.login("ada", "pw"))
    router = RecordingRouter(current=Screen.QUALITY_REVIEW)
    guard = _guard(harness, router)
    assert guard.handle_back(Screen.QUALITY_REVIEW) is False
    assert router.history == []


def test_unmount_stops_decisions(harness):
    router = RecordingRouter()
    guard = _guard(harness, router, defer_seconds=0.05)

    async def go():
        guard.mount()
        guard.unmount()
        await asyncio.sleep(0.1)
        await harness.tokens.login("ada", "pw")
        await asyncio.sleep(0.1)

    asyncio.run(go())
    assert router.history == []
    assert harness.state.subscriber_count() == 0


def test_listener_failure_does_not_break_guard(harness):
    router = RecordingRouter()
    guard = _guard(harness, router)

    def bad(_session, _action):  # noqa: ANN001
        raise RuntimeError("boom")

    async def go():
        harness.state.subscribe(bad, priority=1)
        guard.mount()
        await guard.settle()
        await harness.tokens.login("ada", "pw")
        await guard.settle()

    asyncio.run(go())
    assert router.current == Screen.PORTAL
