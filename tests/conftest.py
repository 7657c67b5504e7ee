"""
Shared fixtures for the gateway tests.

Nothing here touches the network: the platform REST API is served by an
httpx.MockTransport and the WebSocket by an in-memory fake transport.
"""

import asyncio
import json
import os
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

# keep test runs from writing log files
os.environ.setdefault("FEISHU_GATEWAY_LOG_FILES", "0")

from core.gateway.channel import HostCallbacks
from core.gateway.channels.feishu.api import FeishuApiClient
from core.gateway.channels.feishu.config import Credential, FeishuAccount, FeishuConfig
from core.gateway.channels.feishu.token import TokenCache
from core.gateway.types import NormalizedMessage, StatusUpdate

FAR_FUTURE_MS = 10**13


class FakePlatform:
    """
    Scriptable stand-in for the open platform.

    Each path gets a queue of responses (dicts are returned as JSON with
    HTTP 200); the last response is reused once the queue runs dry.
    Every request is recorded.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._responses: Dict[str, List[Any]] = {
            "/open-apis/auth/v3/tenant_access_token/internal": [
                {"code": 0, "tenant_access_token": "t-fresh", "expire": 7200}
            ],
            "/open-apis/im/v1/messages": [{"code": 0, "data": {"message_id": "om_sent"}, "msg": "ok"}],
            "/open-apis/im/v1/images": [{"code": 0, "data": {"image_key": "img_key"}, "msg": "ok"}],
        }
        self.media = b"\x89PNG fake image bytes"
        self.delay: float = 0.0

    def respond(self, path: str, *responses: Any) -> None:
        self._responses[path] = list(responses)

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def json_calls(self, path: str) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.calls(path)]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if request.url.host == "media.example.com":
            return httpx.Response(200, content=self.media)

        queue = self._responses.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"code": 404, "msg": "not found"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def api(platform: FakePlatform) -> FeishuApiClient:
    return FeishuApiClient(httpx.AsyncClient(transport=httpx.MockTransport(platform.handler)))


@pytest.fixture
def token_cache(api: FeishuApiClient) -> TokenCache:
    return TokenCache(api)


@pytest.fixture
def account() -> FeishuAccount:
    """Account whose token is valid for a long time (no exchange needed)."""
    return FeishuAccount(
        account_id="default",
        app_id="cli_test",
        app_secret="secret",
        domain="feishu",
        credential=Credential(token="t-cached", expires_at_ms=FAR_FUTURE_MS),
    )


@pytest.fixture
def config() -> FeishuConfig:
    return FeishuConfig(reconnect_delay_ms=50)


class Recorder:
    """HostCallbacks that remember everything they receive."""

    def __init__(self) -> None:
        self.messages: List[NormalizedMessage] = []
        self.events: List[Dict[str, Any]] = []
        self.statuses: List[StatusUpdate] = []

    async def on_message(self, message: NormalizedMessage) -> None:
        self.messages.append(message)

    async def on_event(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    async def on_status(self, update: StatusUpdate) -> None:
        self.statuses.append(update)

    @property
    def status_values(self) -> List[str]:
        return [s.status.value for s in self.statuses]

    def callbacks(self) -> HostCallbacks:
        return HostCallbacks(
            on_message=self.on_message,
            on_event=self.on_event,
            on_status=self.on_status,
        )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


class FakeTransport:
    """In-memory WebSocket: push frames with feed(), end with close_remote()."""

    def __init__(self) -> None:
        self._frames: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def feed(self, frame: Union[str, bytes, Dict[str, Any]]) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._frames.put_nowait(frame)

    def close_remote(self) -> None:
        self._frames.put_nowait(None)

    async def receive(self) -> Optional[Union[str, bytes]]:
        return await self._frames.get()

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(None)


class FakeConnector:
    """Records connection URLs and hands out FakeTransports (or raises)."""

    def __init__(self) -> None:
        self.urls: List[str] = []
        self.transports: List[FakeTransport] = []
        self.failures: List[Exception] = []
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


def message_frame(
    message_id: str = "om_1",
    sender_id: str = "ou_alice",
    id_type: str = "open_id",
    chat_type: str = "p2p",
    chat_id: str = "oc_chat",
    message_type: str = "text",
    content: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """A frame carrying one message event."""
    message = {
        "message_id": message_id,
        "chat_id": chat_id,
        "chat_type": chat_type,
        "sender": {"id": sender_id, "id_type": id_type, "name": "Alice"},
        "message_type": message_type,
        "content": content if content is not None else json.dumps({"text": "hello"}),
        "create_time": "1700000000000",
    }
    message.update(extra)
    return {"schema": "2.0", "event": {"message": message}}


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
