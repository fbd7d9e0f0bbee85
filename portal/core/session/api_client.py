from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import requests
from pydantic import ValidationError as PydanticValidationError

from portal.core.config.models import ApiConfig
from portal.core.errors import AuthRejected, NetworkError
from portal.core.session.models import LoginResponse


TokenProvider = Callable[[], Awaitable[Optional[str]]]
UnauthorizedHook = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class ValidateResult:
    ok: bool
    status_code: Optional[int]
    detail: str = ""

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401


def _server_message(resp: requests.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return None


class AuthApiClient:
    """
    Blocking `requests` calls run on a worker thread so each request is an
    await point for the event loop.

    Only the login/validate contract lives here; business endpoints go through
    `request_json`, which attaches the bearer token and reports 401s.
    """

    def __init__(self, cfg: ApiConfig, *, http: Optional[requests.Session] = None, logger: Optional[logging.Logger] = None):
        self.cfg = cfg
        self.http = http or requests.Session()
        self.logger = logger or logging.getLogger("portal.session.api")

    def _url(self, path: str) -> str:
        return f"{self.cfg.base_url.rstrip('/')}{path}"

    # ---------- auth contract ----------
    async def login(self, username: str, password: str) -> LoginResponse:
        """
        POST {base}/auth/login. Raises NetworkError when no response arrives
        or the server answers 5xx, AuthRejected for any other non-2xx or a
        body that does not validate.
        """
        try:
            resp = await asyncio.to_thread(
                self.http.post,
                self._url(self.cfg.login_path),
                json={"username": username, "password": password},
                headers={"Accept": "application/json"},
                timeout=self.cfg.timeout_seconds,
                verify=self.cfg.verify_tls,
            )
        except requests.RequestException as e:
            self.logger.warning(f"Login request failed: {type(e).__name__}")
            raise NetworkError(error=type(e).__name__) from e

        if resp.status_code >= 500:
            self.logger.warning(f"Login unavailable: HTTP {resp.status_code}")
            raise NetworkError("The server is unavailable. Please try again later.", status_code=resp.status_code)
        if not 200 <= resp.status_code < 300:
            raise AuthRejected(_server_message(resp) or "Login failed.", status_code=resp.status_code)
        try:
            body = resp.json()
        except ValueError as e:
            raise AuthRejected("Unexpected response from server.", status_code=resp.status_code) from e
        if not isinstance(body, dict):
            raise AuthRejected("Unexpected response from server.", status_code=resp.status_code)
        try:
            return LoginResponse.model_validate(body)
        except PydanticValidationError as e:
            # a 2xx without a token is a refusal on some backends
            raise AuthRejected(_server_message(resp) or "Login failed.", status_code=resp.status_code, error="invalid_login_response") from e

    async def validate(self, token: str) -> ValidateResult:
        try:
            resp = await asyncio.to_thread(
                self.http.get,
                self._url(self.cfg.validate_path),
                headers={"Accept": "application/json", "Authorization": f"Bearer {token}"},
                timeout=self.cfg.timeout_seconds,
                verify=self.cfg.verify_tls,
            )
        except requests.RequestException as e:
            return ValidateResult(ok=False, status_code=None, detail=type(e).__name__)
        if 200 <= resp.status_code < 300:
            return ValidateResult(ok=True, status_code=resp.status_code, detail="ok")
        return ValidateResult(ok=False, status_code=resp.status_code, detail=f"HTTP {resp.status_code}")

    # ---------- authorized business calls ----------
    async def request_json(
        self,
        method: str,
        path: str,
        *,
        token_provider: TokenProvider,
        on_unauthorized: Optional[UnauthorizedHook] = None,
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Authorized JSON call for the portal screens. Empty bodies return None.
        A 401 runs `on_unauthorized(token)` (the token manager drops the
        token) and raises AuthRejected.
        """
        token = await token_provider()
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            resp = await asyncio.to_thread(
                self.http.request,
                method.upper(),
                self._url(path),
                headers=headers,
                json=json_body,
                params=params,
                timeout=self.cfg.timeout_seconds,
                verify=self.cfg.verify_tls,
            )
        except requests.RequestException as e:
            raise NetworkError(error=type(e).__name__, path=path) from e

        if resp.status_code == 401:
            if on_unauthorized is not None and token:
                await on_unauthorized(token)
            raise AuthRejected("Your session has expired. Please sign in again.", status_code=401, path=path)
        if not 200 <= resp.status_code < 300:
            raise NetworkError(f"Request failed (HTTP {resp.status_code}).", path=path, status_code=resp.status_code)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise NetworkError("Invalid response from server.", path=path) from e

    def close(self) -> None:
        self.http.close()
