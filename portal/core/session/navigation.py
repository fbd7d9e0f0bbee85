from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Set

from portal.core.session.models import Session
from portal.core.session.state import AuthAction, SessionReader


class Screen(str, Enum):
    LOGIN = "login"
    PORTAL = "portal"
    HELPDESK = "helpdesk"
    QUALITY_REVIEW = "quality-review"
    PROFILE = "profile"


PROTECTED_SCREENS = frozenset({Screen.PORTAL, Screen.HELPDESK, Screen.QUALITY_REVIEW, Screen.PROFILE})


class Router(Protocol):
    @property
    def current(self) -> Optional[Screen]: ...

    def replace(self, screen: Screen, *, pin_required: bool = False) -> None: ...


@dataclass(frozen=True)
class NavigationDecision:
    target: Screen
    pin_required: bool = False
    reason: str = ""


def decide(session: Session, pin_active: bool) -> NavigationDecision:
    if not session.is_authenticated:
        return NavigationDecision(Screen.LOGIN, reason="unauthenticated")
    if pin_active and not session.unlocked:
        return NavigationDecision(Screen.LOGIN, pin_required=True, reason="pin_verification")
    return NavigationDecision(Screen.PORTAL, reason="authenticated")


class NavigationGuard:
    """
    Keeps the router on a screen the Session allows.

    Decisions run as tasks on the event loop: the first one a tick after
    `mount()` so the router has settled, then one per state change. Only a
    change of target reaches the router.
    """

    def __init__(
        self,
        reader: SessionReader,
        router: Router,
        *,
        pin_status: Callable[[], Awaitable[bool]],
        defer_seconds: float = 0.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.reader = reader
        self.router = router
        self.pin_status = pin_status
        self.defer_seconds = max(0.0, float(defer_seconds))
        self.logger = logger or logging.getLogger("portal.session.navigation")
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._pending: Set[asyncio.Task] = set()
        self._applied: Optional[NavigationDecision] = None
        self._pin_active = False

    @property
    def mounted(self) -> bool:
        return self._unsubscribe is not None

    @property
    def last_decision(self) -> Optional[NavigationDecision]:
        return self._applied

    def mount(self) -> None:
        if self.mounted:
            return
        self._unsubscribe = self.reader.subscribe(self._on_change, priority=90)
        self._schedule()

    def unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    async def settle(self) -> None:
        """Wait for every scheduled decision to finish."""
        while True:
            pending = [t for t in self._pending if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _on_change(self, session: Session, action: AuthAction) -> None:
        self._schedule()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug("No running loop; navigation decision skipped")
            return
        task = loop.create_task(self._decide_later())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _decide_later(self) -> None:
        # sleep(0) still yields one tick
        await asyncio.sleep(self.defer_seconds)
        try:
            await self.evaluate()
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Navigation decision failed: {e}")

    async def evaluate(self) -> NavigationDecision:
        session = self.reader.session
        self._pin_active = bool(session.is_authenticated and await self.pin_status())
        # the session may have moved on while the PIN status was read
        decision = decide(self.reader.session, self._pin_active)
        self._apply(decision)
        return decision

    def _apply(self, decision: NavigationDecision) -> None:
        shown_pin = self._applied.pin_required if self._applied is not None else False
        if self.router.current == decision.target and shown_pin == decision.pin_required:
            self._applied = decision
            return
        # any protected screen already satisfies an authenticated-area decision
        if decision.target == Screen.PORTAL and not decision.pin_required and self.router.current in PROTECTED_SCREENS:
            self._applied = decision
            return
        self.logger.info(f"Navigating to {decision.target.value} ({decision.reason})")
        self.router.replace(decision.target, pin_required=decision.pin_required)
        self._applied = decision

    def handle_back(self, screen: Screen) -> bool:
        """
        Back action on `screen`. Returns True when the guard consumed it by
        redirecting to login.
        """
        if screen not in PROTECTED_SCREENS:
            return False
        decision = decide(self.reader.session, self._pin_active)
        if decision.target == Screen.LOGIN:
            self._apply(decision)
            return True
        return False
