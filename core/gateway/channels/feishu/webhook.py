"""
Feishu webhook session

Event subscription over HTTP: the platform POSTs event bodies to
``config.webhook_path``. Served by FastAPI under uvicorn.

Responses:
- 200 {"challenge": ...}  url_verification handshake
- 200 "OK"                any other event (after dispatch, whatever its outcome)
- 400                     body is not a JSON object
- 401                     signature mismatch (verification secret configured)
- 500                     unexpected internal error
"""

import asyncio
import base64
import hashlib
import hmac
import socket
from typing import Any, Mapping, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from logger import get_logger

from core.gateway.channels.feishu.events import parse_frame
from core.gateway.channels.feishu.session import InboundSession
from core.gateway.exceptions import ProtocolError, SignatureError, TransportError
from core.gateway.types import ChannelStatus

logger = get_logger("gateway.channels.feishu.webhook")

TIMESTAMP_HEADER = "x-lark-request-timestamp"
SIGNATURE_HEADER = "x-lark-signature"

_STARTUP_POLL_INTERVAL = 0.05
_STARTUP_MAX_WAIT = 10.0


def compute_signature(timestamp: str, secret: str) -> str:
    """base64(HMAC-SHA256(key=secret, msg=timestamp + secret))."""
    digest = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}{secret}".encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def check_signature(signature: str, timestamp: str, secret: str) -> None:
    """
    Raises:
        SignatureError: header missing or not matching
    """
    if not signature or not timestamp:
        raise SignatureError("Missing signature headers")
    if not hmac.compare_digest(signature, compute_signature(timestamp, secret)):
        raise SignatureError("Signature mismatch")


class WebhookSession(InboundSession):
    """Inbound HTTP listener feeding the same pipeline as the WebSocket path."""

    mode = "webhook"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.app = self._build_app()
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None
        self._socket: Optional[socket.socket] = None

    def _build_app(self) -> FastAPI:
        app = FastAPI(
            title=f"Feishu webhook ({self.account.account_id})",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )

        async def receive_event(request: Request) -> Response:
            body = await request.body()
            return await self.handle_webhook(body, request.headers)

        app.add_api_route(self.config.webhook_path, receive_event, methods=["POST"])
        return app

    async def verify_signature(self, payload: str, signature: str, timestamp: str) -> bool:
        """True when no secret is configured or the signature matches."""
        secret = self.config.verification_token
        if not secret:
            return True
        try:
            check_signature(signature, timestamp, secret)
        except SignatureError as e:
            logger.warning(
                "Feishu webhook signature rejected",
                extra={"account": self.account.account_id, "error": str(e)},
            )
            return False
        return True

    async def handle_webhook(self, body: bytes, headers: Mapping[str, str]) -> Response:
        try:
            if not await self.verify_signature(
                body.decode("utf-8", errors="replace"),
                headers.get(SIGNATURE_HEADER, ""),
                headers.get(TIMESTAMP_HEADER, ""),
            ):
                return PlainTextResponse("Unauthorized", status_code=401)

            try:
                payload = parse_frame(body)
            except ProtocolError as e:
                logger.warning(
                    "Dropping malformed Feishu webhook body",
                    extra={"account": self.account.account_id, "error": str(e)},
                )
                return PlainTextResponse("Bad Request", status_code=400)

            if payload.get("type") == "url_verification":
                logger.info("Answering Feishu url_verification", extra={"account": self.account.account_id})
                return JSONResponse({"challenge": payload.get("challenge")})

            await self.dispatch(payload)
            return PlainTextResponse("OK")

        except Exception as e:
            logger.error(
                "Feishu webhook handler failed",
                extra={"account": self.account.account_id, "error": str(e)},
                exc_info=True,
            )
            return PlainTextResponse("Internal Server Error", status_code=500)

    @property
    def bound_port(self) -> Optional[int]:
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    async def start(self) -> None:
        """
        Bind the listener and serve in the background.

        Raises:
            TransportError: the address could not be bound
        """
        if self._stopped or self._server_task is not None:
            return
        self._status = ChannelStatus.CONNECTING

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.webhook_host, self.config.webhook_port))
        except OSError as e:
            sock.close()
            self._status = ChannelStatus.DISCONNECTED
            raise TransportError(
                f"Cannot bind webhook listener on {self.config.webhook_host}:{self.config.webhook_port}: {e}"
            ) from e
        self._socket = sock

        server_config = uvicorn.Config(self.app, log_level="warning", lifespan="off")
        self._server = uvicorn.Server(server_config)
        self._server_task = asyncio.create_task(
            self._server.serve(sockets=[sock]),
            name=f"feishu_webhook_{self.account.account_id}",
        )

        elapsed = 0.0
        while not self._server.started and elapsed < _STARTUP_MAX_WAIT:
            if self._server_task.done():
                break
            await asyncio.sleep(_STARTUP_POLL_INTERVAL)
            elapsed += _STARTUP_POLL_INTERVAL

        if not self._server.started:
            await self._shutdown_server()
            raise TransportError("Webhook listener did not start")

        logger.info(
            "Feishu webhook listening",
            extra={
                "account": self.account.account_id,
                "host": self.config.webhook_host,
                "port": self.bound_port,
                "path": self.config.webhook_path,
            },
        )
        await self._emit_status(ChannelStatus.CONNECTED)
        await self._emit_status(ChannelStatus.READY)

    async def _shutdown_server(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            try:
                await asyncio.wait_for(self._server_task, timeout=_STARTUP_MAX_WAIT)
            except asyncio.TimeoutError:
                logger.warning("Feishu webhook server did not exit in time, cancelled")
            except Exception as e:
                logger.warning("Feishu webhook server exited with error", extra={"error": str(e)})
        self._server = None
        self._server_task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        was_serving = self._server_task is not None
        await self._shutdown_server()
        await self._close_owned_api()
        if was_serving:
            await self._emit_status(ChannelStatus.STOPPED)
        else:
            self._status = ChannelStatus.STOPPED
        logger.info("Feishu webhook stopped", extra={"account": self.account.account_id})
