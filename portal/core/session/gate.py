from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from portal.core.errors import LoginInProgressError


@dataclass(frozen=True)
class GateTicket:
    owner: str
    # True when another flow held the gate on arrival and this caller had to wait
    waited: bool


class LoginGate:
    """
    Process-scoped single-flight guard shared by password, PIN and auto-login.

    Held only in memory: a restarted process has no in-flight call to protect,
    so nothing here outlives the event loop.
    """

    def __init__(self, *, wait_seconds: float = 15.0, logger: Optional[logging.Logger] = None):
        self.wait_seconds = float(wait_seconds)
        self.logger = logger or logging.getLogger("portal.session.gate")
        self._lock = asyncio.Lock()
        self._owner: Optional[str] = None
        self._contenders = 0

    def locked(self) -> bool:
        return self._lock.locked()

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    @contextlib.asynccontextmanager
    async def hold(self, owner: str) -> AsyncIterator[GateTicket]:
        # counts holder plus waiters; zero means the acquire below cannot block
        waited = self._contenders > 0
        self._contenders += 1
        try:
            if waited:
                self.logger.info(f"{owner}: waiting for in-flight {self._owner or 'login'}")
                try:
                    await asyncio.wait_for(self._lock.acquire(), timeout=self.wait_seconds)
                except asyncio.TimeoutError as e:
                    raise LoginInProgressError(owner=owner, holder=self._owner) from e
            else:
                await self._lock.acquire()
            self._owner = owner
            try:
                yield GateTicket(owner=owner, waited=waited)
            finally:
                self._owner = None
                self._lock.release()
        finally:
            self._contenders -= 1
