from __future__ import annotations

import threading
import time as _time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

import requests

from portal.core.session.credential_store import MemoryBackend
from portal.core.session.navigation import Screen


class StubResponse:
    def __init__(self, status_code: int = 200, json_data: Any = None, content: Optional[bytes] = None):
        self.status_code = status_code
        self._json_data = json_data
        if content is None:
            content = b"" if json_data is None else b"{}"
        self.content = content

    def json(self):
        if self._json_data is None:
            raise ValueError("no JSON body")
        return self._json_data


def login_ok(token: str = "tok-1", **profile: Any) -> StubResponse:
    body: Dict[str, Any] = {"token": token}
    if profile:
        body["userProfile"] = profile
    return StubResponse(200, json_data=body)


Reply = Union[StubResponse, BaseException, Callable[..., StubResponse]]


class FakeHttpSession:
    """
    requests.Session stand-in. Calls run on worker threads (the client uses
    asyncio.to_thread), so `delay` keeps a request in flight for a while.
    """

    def __init__(
        self,
        *,
        login: Optional[Reply] = None,
        validate: Optional[Reply] = None,
        request: Optional[Reply] = None,
        delay: float = 0.0,
    ):
        self.login = login if login is not None else login_ok()
        self.validate = validate if validate is not None else StubResponse(200, json_data={"ok": True})
        self.request_reply = request if request is not None else StubResponse(200, json_data={})
        self.delay = float(delay)
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.closed = False
        self._lock = threading.Lock()

    def _answer(self, reply: Reply, method: str, url: str, kw: Dict[str, Any]) -> StubResponse:
        with self._lock:
            self.calls.append((method, url, kw))
        if self.delay:
            _time.sleep(self.delay)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply) and not isinstance(reply, StubResponse):
            return reply(url, **kw)
        return reply

    def post(self, url: str, **kw: Any) -> StubResponse:
        return self._answer(self.login, "POST", url, kw)

    def get(self, url: str, **kw: Any) -> StubResponse:
        return self._answer(self.validate, "GET", url, kw)

    def request(self, method: str, url: str, **kw: Any) -> StubResponse:
        return self._answer(self.request_reply, method, url, kw)

    def close(self) -> None:
        self.closed = True

    def count(self, method: str) -> int:
        with self._lock:
            return sum(1 for m, _u, _k in self.calls if m == method)


def connection_refused() -> requests.ConnectionError:
    return requests.ConnectionError("refused")


class RecordingRouter:
    def __init__(self, current: Optional[Screen] = None):
        self.current = current
        self.pin_required = False
        self.history: List[Tuple[Screen, bool]] = []

    def replace(self, screen: Screen, *, pin_required: bool = False) -> None:
        self.current = screen
        self.pin_required = pin_required
        self.history.append((screen, pin_required))


class FailingBackend(MemoryBackend):
    """MemoryBackend that raises OSError for selected keys."""

    def __init__(
        self,
        initial: Optional[Dict[str, str]] = None,
        *,
        fail_set: Optional[Set[str]] = None,
        fail_delete: Optional[Set[str]] = None,
        fail_get: Optional[Set[str]] = None,
    ):
        super().__init__(initial)
        self.fail_set = set(fail_set or ())
        self.fail_delete = set(fail_delete or ())
        self.fail_get = set(fail_get or ())

    def get(self, key: str) -> Optional[str]:
        if key in self.fail_get:
            raise OSError(f"read failed: {key}")
        return super().get(key)

    def set(self, key: str, value: str, *, trace_id: str = "memory") -> None:
        if key in self.fail_set:
            raise OSError(f"write failed: {key}")
        super().set(key, value, trace_id=trace_id)

    def delete(self, key: str, *, trace_id: str = "memory") -> None:
        if key in self.fail_delete:
            raise OSError(f"delete failed: {key}")
        super().delete(key, trace_id=trace_id)
