"""
Feishu open platform HTTP client

Thin async wrapper over the REST endpoints the channel needs:
tenant token exchange, message send, media upload, user lookup and
fetching remote media. Every response body is checked for the platform's
``code`` discriminator; non-zero codes raise.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import httpx

from logger import get_logger

from core.gateway.channels.feishu.config import FeishuAccount
from core.gateway.exceptions import AuthError, TransportError

logger = get_logger("gateway.channels.feishu.api")

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
MESSAGES_PATH = "/open-apis/im/v1/messages"
IMAGES_PATH = "/open-apis/im/v1/images"
USERS_PATH = "/open-apis/contact/v3/users"


class FeishuApiClient:
    """
    Async client for the Feishu/Lark open platform.

    Owns (or borrows) one ``httpx.AsyncClient``. Inject a client built on
    ``httpx.MockTransport`` in tests.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            raise TransportError(
                f"Non-JSON response (HTTP {response.status_code})",
                code=response.status_code,
            )
        if not isinstance(data, dict):
            raise TransportError("Unexpected response shape", code=response.status_code)
        return data

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._get_http_client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                "Feishu API request failed",
                extra={"method": method, "url": url, "error": str(e)},
            )
            raise TransportError(f"{method} {url} failed: {e}") from e
        logger.debug(
            "Feishu API response",
            extra={"method": method, "url": url, "http_status": response.status_code},
        )
        return self._decode(response)

    async def exchange_token(self, account: FeishuAccount) -> Dict[str, Any]:
        """
        POST the app credentials and return ``{tenant_access_token, expire}``.

        Raises:
            AuthError: platform answered with a non-zero code
            TransportError: network failure
        """
        data = await self._request(
            "POST",
            f"{account.base_url}{TOKEN_PATH}",
            json={"app_id": account.app_id, "app_secret": account.app_secret},
        )
        if data.get("code") != 0:
            raise AuthError(
                f"Failed to get tenant access token: {data.get('msg')}",
                code=data.get("code", -1),
            )
        return data

    async def send_message(
        self,
        account: FeishuAccount,
        token: str,
        receive_id_type: str,
        receive_id: str,
        msg_type: str,
        content: str,
    ) -> str:
        """
        Send one message; ``content`` is the JSON-encoded string payload.

        Returns:
            platform message_id
        """
        data = await self._request(
            "POST",
            f"{account.base_url}{MESSAGES_PATH}",
            params={"receive_id_type": receive_id_type},
            headers={"Authorization": f"Bearer {token}"},
            json={"receive_id": receive_id, "msg_type": msg_type, "content": content},
        )
        if data.get("code") != 0:
            raise TransportError(str(data.get("msg") or "send failed"), code=data.get("code", -1))
        return (data.get("data") or {}).get("message_id", "")

    async def upload_media(
        self,
        account: FeishuAccount,
        token: str,
        image_type: str,
        payload: bytes,
        filename: str,
        mime_type: str,
    ) -> str:
        """
        Multipart upload; ``image_type`` is ``message`` or ``file``.

        Returns:
            opaque media handle (image_key)
        """
        data = await self._request(
            "POST",
            f"{account.base_url}{IMAGES_PATH}",
            headers={"Authorization": f"Bearer {token}"},
            data={"image_type": image_type},
            files={"file": (filename, payload, mime_type)},
        )
        if data.get("code") != 0:
            raise TransportError(str(data.get("msg") or "upload failed"), code=data.get("code", -1))
        return (data.get("data") or {}).get("image_key", "")

    async def get_user(
        self,
        account: FeishuAccount,
        token: str,
        user_id: str,
        id_type: str = "open_id",
    ) -> Dict[str, Any]:
        """Return the ``data.user`` object of the contact API."""
        data = await self._request(
            "GET",
            f"{account.base_url}{USERS_PATH}/{user_id}",
            params={"user_id_type": id_type},
            headers={"Authorization": f"Bearer {token}"},
        )
        if data.get("code") != 0:
            raise TransportError(str(data.get("msg") or "user lookup failed"), code=data.get("code", -1))
        return (data.get("data") or {}).get("user") or {}

    async def fetch_media(self, source: str) -> bytes:
        """Read media bytes from an http(s) URL or a local path."""
        if source.startswith(("http://", "https://")):
            try:
                response = await self._get_http_client().get(source)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise TransportError(f"Failed to fetch media {source}: {e}") from e
            return response.content

        path = Path(source.removeprefix("file://")).expanduser()
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise TransportError(f"Failed to read media {path}: {e}") from e
