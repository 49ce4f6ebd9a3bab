"""Async client for the Lark Open API."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx

from lark_minutes.config import LarkConfig
from lark_minutes.utils.logging import get_logger

log = get_logger(__name__)

APP_ACCESS_TOKEN_PATH = "/open-apis/auth/v3/app_access_token/internal"

# Refresh this long before Lark's reported expiry
TOKEN_REFRESH_MARGIN_SECONDS = 5 * 60


class LarkApiError(Exception):
    def __init__(self, message: str, code: int = -1, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


@dataclass
class _CachedToken:
    value: str
    expires_at: float


class LarkClient:
    """Thin wrapper over ``httpx.AsyncClient`` that unwraps Lark envelopes.

    Every Lark response carries ``{"code": int, "msg": str, "data": ...}``;
    a non-zero code is raised as ``LarkApiError``.
    """

    def __init__(self, config: LarkConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout_seconds,
            transport=transport,
        )
        self._token: _CachedToken | None = None
        self._token_lock = asyncio.Lock()

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        access_token: str | None = None,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json; charset=utf-8"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            resp = await self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise LarkApiError(f"Lark request timeout: {path}") from e
        except httpx.TransportError as e:
            raise LarkApiError(f"Lark network error: {e}") from e

        body = self._decode(resp)
        code = body.get("code", 0)
        if resp.status_code >= 400 or code != 0:
            message = body.get("msg") or resp.reason_phrase or "Lark API error"
            log.warning(
                "lark_api_error",
                path=path,
                status=resp.status_code,
                code=code,
                msg=message,
            )
            raise LarkApiError(
                f"Lark API error ({resp.status_code}): {message}",
                code=code if code != 0 else resp.status_code,
                status_code=resp.status_code,
            )
        return body

    async def get(self, path: str, access_token: str, params: dict[str, Any] | None = None) -> Any:
        body = await self.request("GET", path, access_token=access_token, params=params)
        return body.get("data")

    # ------------------------------------------------------------------
    # App access token
    # ------------------------------------------------------------------

    async def get_app_access_token(self) -> str:
        """Return a cached app access token, fetching a new one near expiry."""
        async with self._token_lock:
            now = time.time()
            if self._token is not None and now < self._token.expires_at:
                return self._token.value

            if not self._config.app_id or not self._config.app_secret:
                raise LarkApiError("Lark app_id and app_secret are required")

            body = await self.request(
                "POST",
                APP_ACCESS_TOKEN_PATH,
                json={"app_id": self._config.app_id, "app_secret": self._config.app_secret},
            )
            token = body.get("app_access_token")
            if not token:
                raise LarkApiError("Lark token response missing app_access_token")

            expire = int(body.get("expire", 0))
            self._token = _CachedToken(
                value=token,
                expires_at=now + max(expire - TOKEN_REFRESH_MARGIN_SECONDS, 0),
            )
            log.info("lark_app_token_refreshed", expires_in=expire)
            return token

    def invalidate_token(self) -> None:
        self._token = None

    @staticmethod
    def _decode(resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            if resp.status_code >= 400:
                return {}
            raise LarkApiError(
                "Lark returned a non-JSON response", status_code=resp.status_code
            )
        return body
