"""
Standalone gateway service

Runs every configured channel session and exposes the operator API.
Inbound messages and events are logged; embed ``create_gateway`` with your
own HostCallbacks to hand them to an agent instead.

    FEISHU_GATEWAY_CONFIG=config/gateway.yaml python main.py
"""

import os
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI

from logger import get_logger

from core.gateway.channel import HostCallbacks
from core.gateway.loader import create_gateway
from core.gateway.types import NormalizedMessage, StatusUpdate
from routers.gateway import router as gateway_router
from routers.gateway import set_channel_manager

logger = get_logger("main")

APP_NAME = "Feishu Gateway"
APP_VERSION = "0.1.0"


async def _log_message(message: NormalizedMessage) -> None:
    logger.info(
        "Inbound message",
        extra={
            "message_id": message.id,
            "sender": message.sender.id,
            "conversation_kind": message.conversation_kind,
            "text": message.text,
        },
    )


async def _log_event(event: Dict[str, Any]) -> None:
    logger.info("Inbound event", extra={"event_keys": sorted(event.keys())})


async def _log_status(update: StatusUpdate) -> None:
    logger.info(
        "Channel status",
        extra={"account": update.account_id, "status": update.status.value, "detail": update.detail},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager = await create_gateway(
        HostCallbacks(on_message=_log_message, on_event=_log_event, on_status=_log_status)
    )
    if manager is not None:
        await manager.start_all()
    set_channel_manager(manager)

    yield

    set_channel_manager(None)
    if manager is not None:
        await manager.stop_all()


app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
app.include_router(gateway_router)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok", "version": APP_VERSION}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("FEISHU_GATEWAY_API_HOST", "127.0.0.1"),
        port=int(os.getenv("FEISHU_GATEWAY_API_PORT", "8000")),
        log_level="info",
    )
