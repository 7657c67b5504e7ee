"""
Feishu inbound sessions

InboundSession holds everything one (account, config) pair needs to receive
events: pairing state, host callbacks, status and the shared outbound path
for pairing prompts. Subclasses supply the transport:

- WebSocketSession: outbound-initiated push connection with a fixed-delay,
  unbounded reconnect loop
- WebhookSession (webhook.py): inbound HTTP listener

State machine (WebSocket):

    idle -> connecting -> connected -> disconnected -> connecting -> ...
    any state --stop()--> stopped (terminal)
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union

import aiohttp

from logger import clear_request_context, get_logger, set_request_context

from core.gateway.channel import HostCallbacks
from core.gateway.channels.feishu.api import FeishuApiClient
from core.gateway.channels.feishu.config import CAPABILITIES, FeishuAccount, FeishuConfig
from core.gateway.channels.feishu.events import parse_frame
from core.gateway.channels.feishu.outbound import FeishuOutbound
from core.gateway.channels.feishu.pairing import PairingState, pairing_prompt
from core.gateway.channels.feishu.pipeline import (
    Drop,
    ForwardEvent,
    ForwardMessage,
    PromptPairing,
    Route,
    route_payload,
)
from core.gateway.channels.feishu.token import TokenCache
from core.gateway.channels.feishu.users import UserDirectory
from core.gateway.exceptions import ProtocolError
from core.gateway.types import (
    ChannelStatus,
    NormalizedMessage,
    SendContext,
    Sender,
    StatusUpdate,
)

logger = get_logger("gateway.channels.feishu.session")

WS_MESSAGES_PATH = "/open-apis/im/v1/messages"


class InboundSession:
    """
    Base inbound session: routes decoded payloads and talks to the host.

    One instance per start(); nothing is shared between sessions except
    the account object (and therefore its credential) when the caller
    passes the same one to outbound sends.
    """

    capabilities = CAPABILITIES
    mode = "base"

    def __init__(
        self,
        account: FeishuAccount,
        config: FeishuConfig,
        callbacks: Optional[HostCallbacks] = None,
        api: Optional[FeishuApiClient] = None,
        token_cache: Optional[TokenCache] = None,
        outbound: Optional[FeishuOutbound] = None,
        users: Optional[UserDirectory] = None,
    ) -> None:
        self.account = account
        self.config = config
        self._callbacks = callbacks or HostCallbacks()
        self._owns_api = api is None
        self._api = api or FeishuApiClient()
        self._token_cache = token_cache or TokenCache(self._api)
        self._outbound = outbound or FeishuOutbound(self._api, self._token_cache)
        self._users = users or UserDirectory(self._api, self._token_cache)
        self.pairing = PairingState.seeded(config.allow_from)
        self._status: ChannelStatus = ChannelStatus.IDLE
        self._stopped = False
        # one frame or webhook delivery at a time, in arrival order
        self._dispatch_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Host-facing
    # ------------------------------------------------------------------

    def get_status(self) -> ChannelStatus:
        return self._status

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def verify_signature(self, payload: str, signature: str, timestamp: str) -> bool:
        return True

    def approve(self, user_id: str) -> bool:
        """Operator approval of a pending direct-message sender."""
        changed = self.pairing.approve(user_id)
        logger.info(
            "Pairing approved",
            extra={"account": self.account.account_id, "user_id": user_id, "changed": changed},
        )
        return changed

    def revoke(self, user_id: str) -> bool:
        changed = self.pairing.revoke(user_id)
        logger.info(
            "Pairing revoked",
            extra={"account": self.account.account_id, "user_id": user_id, "changed": changed},
        )
        return changed

    def pending_users(self) -> List[str]:
        return sorted(self.pairing.pending)

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    async def handle_frame(self, raw: Union[str, bytes]) -> Route:
        """Decode and dispatch one raw frame. Malformed frames are dropped."""
        try:
            payload = parse_frame(raw)
        except ProtocolError as e:
            logger.warning(
                "Dropping malformed Feishu frame",
                extra={"account": self.account.account_id, "error": str(e)},
            )
            return Drop(reason="malformed")
        return await self.dispatch(payload)

    async def dispatch(self, payload: dict) -> Route:
        """Route one decoded payload and carry out the decision."""
        async with self._dispatch_lock:
            return await self._dispatch(payload)

    async def _dispatch(self, payload: dict) -> Route:
        set_request_context(account_id=self.account.account_id)
        try:
            try:
                route = route_payload(payload, self.account, self.config, self.pairing)
            except ProtocolError as e:
                logger.warning(
                    "Dropping malformed Feishu event",
                    extra={"account": self.account.account_id, "error": str(e)},
                )
                return Drop(reason="malformed")
            await self._execute(route)
            return route
        finally:
            clear_request_context()

    async def _execute(self, route: Route) -> None:
        if isinstance(route, ForwardMessage):
            message = await self._enrich(route.message)
            set_request_context(conversation_id=message.conversation_id, message_id=message.id)
            logger.info(
                "Forwarding Feishu message",
                extra={"kind": message.kind, "conversation_kind": message.conversation_kind},
            )
            await self._safe_call(self._callbacks.on_message, message)

        elif isinstance(route, ForwardEvent):
            await self._safe_call(self._callbacks.on_event, route.payload)

        elif isinstance(route, PromptPairing):
            logger.info(
                "Direct message held for pairing",
                extra={"account": self.account.account_id, "user_id": route.user_id},
            )
            result = await self._outbound.send_text(
                self.account,
                self.config,
                pairing_prompt(route.user_id),
                SendContext(
                    conversation_id=route.chat_id,
                    conversation_kind="direct",
                    recipient_id=route.user_id,
                ),
                render_mode="raw",
            )
            if not result.ok:
                logger.warning(
                    "Failed to send pairing prompt",
                    extra={"user_id": route.user_id, "error": result.error},
                )

        elif isinstance(route, Drop):
            logger.debug("Feishu event dropped", extra={"reason": route.reason})

    async def _enrich(self, message: NormalizedMessage) -> NormalizedMessage:
        if not self.config.resolve_sender_names or message.sender.name != "Unknown":
            return message
        profile = await self._users.get_user(self.account, message.sender.id)
        if profile is None:
            return message
        return message.model_copy(
            update={"sender": Sender(id=message.sender.id, name=profile.name)}
        )

    async def _safe_call(self, callback: Callable[[Any], Awaitable[None]], arg: Any) -> None:
        try:
            await callback(arg)
        except Exception as e:
            logger.error(
                "Host callback raised",
                extra={"account": self.account.account_id, "error": str(e)},
                exc_info=True,
            )

    async def _emit_status(self, status: ChannelStatus, detail: Optional[str] = None) -> None:
        if status != ChannelStatus.READY:
            self._status = status
        await self._safe_call(
            self._callbacks.on_status,
            StatusUpdate(status=status, account_id=self.account.account_id, detail=detail),
        )

    async def _close_owned_api(self) -> None:
        """Close the API client if this session created it (injected clients are the caller's)."""
        if self._owns_api:
            await self._api.close()


# ======================================================================
# WebSocket transport
# ======================================================================


class WebSocketTransport(Protocol):
    async def receive(self) -> Optional[Union[str, bytes]]:
        """Next data frame, or None once the connection is closed."""
        ...

    async def close(self) -> None:
        ...


Connector = Callable[[str], Awaitable[WebSocketTransport]]


class AiohttpTransport:
    """aiohttp client WebSocket behind the WebSocketTransport protocol."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    async def receive(self) -> Optional[Union[str, bytes]]:
        while True:
            msg = await self._ws.receive()
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                return msg.data
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                return None

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


async def aiohttp_connector(url: str) -> AiohttpTransport:
    session = aiohttp.ClientSession()
    try:
        ws = await session.ws_connect(url, heartbeat=30)
    except Exception:
        await session.close()
        raise
    return AiohttpTransport(session, ws)


class WebSocketSession(InboundSession):
    """
    Push connection to ``wss://<domain>/open-apis/im/v1/messages?token=...``.

    Frames are handled one at a time in arrival order. When the connection
    closes (or cannot be opened) the session reports ``disconnected`` and
    retries after ``config.reconnect_delay_ms``, forever, until stop().
    """

    mode = "websocket"

    def __init__(self, *args: Any, connector: Optional[Connector] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._connector: Connector = connector or aiohttp_connector
        self._transport: Optional[WebSocketTransport] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._started = False
        self._ready_emitted = False
        self.connect_attempts = 0

    def ws_url(self, token: str) -> str:
        return f"wss://{self.account.host}{WS_MESSAGES_PATH}?token={token}"

    async def start(self) -> None:
        """Open the connection; failures fall through to the reconnect loop."""
        if self._stopped:
            logger.warning("start() on a stopped Feishu session ignored",
                           extra={"account": self.account.account_id})
            return
        if self._started:
            return
        self._started = True
        logger.info("Starting Feishu channel (WebSocket)", extra={"account": self.account.account_id})
        await self._connect()

    async def _connect(self) -> None:
        if self._stopped:
            return
        self._status = ChannelStatus.CONNECTING
        self.connect_attempts += 1
        try:
            token = await self._token_cache.get_token(self.account)
            if self._stopped:
                return
            transport = await self._connector(self.ws_url(token))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._stopped:
                return
            logger.warning(
                "Feishu WebSocket connect failed",
                extra={"account": self.account.account_id, "attempt": self.connect_attempts, "error": str(e)},
            )
            await self._handle_closed(detail=str(e))
            return

        if self._stopped:
            # stop() won the race while the handshake was in flight
            await transport.close()
            return

        self._transport = transport
        logger.info("Feishu WebSocket connected", extra={"account": self.account.account_id})
        await self._emit_status(ChannelStatus.CONNECTED)
        if not self._ready_emitted:
            self._ready_emitted = True
            await self._emit_status(ChannelStatus.READY)
        self._reader_task = asyncio.create_task(
            self._read_loop(transport), name=f"feishu_ws_reader_{self.account.account_id}"
        )

    async def _read_loop(self, transport: WebSocketTransport) -> None:
        try:
            while not self._stopped:
                frame = await transport.receive()
                if frame is None:
                    break
                await self.handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Feishu WebSocket read failed",
                extra={"account": self.account.account_id, "error": str(e)},
                exc_info=True,
            )

        if self._transport is transport:
            self._transport = None
        await self._close_transport(transport)
        if self._stopped:
            return
        logger.warning(
            "Feishu WebSocket disconnected, reconnecting",
            extra={"account": self.account.account_id, "delay_ms": self.config.reconnect_delay_ms},
        )
        await self._handle_closed()

    async def _close_transport(self, transport: WebSocketTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(
                "Error closing Feishu WebSocket",
                extra={"account": self.account.account_id, "error": str(e)},
            )

    async def _handle_closed(self, detail: Optional[str] = None) -> None:
        await self._emit_status(ChannelStatus.DISCONNECTED, detail=detail)
        if self._stopped:
            return
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(self.config.reconnect_delay_ms / 1000),
            name=f"feishu_ws_reconnect_{self.account.account_id}",
        )

    async def _reconnect_after(self, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        if self._stopped:
            return
        self._reconnect_task = None
        await self._connect()

    async def stop(self) -> None:
        """Cancel any pending reconnect and close the connection. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        current = asyncio.current_task()

        for task in (self._reconnect_task, self._reader_task):
            if task and not task.done() and task is not current:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnect_task = None
        self._reader_task = None

        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_transport(transport)
        await self._close_owned_api()

        if self._started:
            await self._emit_status(ChannelStatus.STOPPED)
        else:
            self._status = ChannelStatus.STOPPED
        logger.info("Feishu channel stopped", extra={"account": self.account.account_id})
