"""
Gateway operator API

Provides endpoints to:
- Check channel session status
- List pending pairing requests
- Approve / revoke direct-message senders
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from logger import get_logger

from core.gateway.manager import ChannelManager

logger = get_logger("routers.gateway")

router = APIRouter(prefix="/api/v1/gateway", tags=["gateway"])

# Set during application startup
_channel_manager: Optional[ChannelManager] = None


def set_channel_manager(manager: Optional[ChannelManager]) -> None:
    """Set the ChannelManager instance served by this router."""
    global _channel_manager
    _channel_manager = manager


def _require_manager() -> ChannelManager:
    if _channel_manager is None:
        raise HTTPException(status_code=503, detail="Gateway is not running")
    return _channel_manager


class PairingResponse(BaseModel):
    channel: str
    account_id: str
    user_id: str
    changed: bool


# ==================== Status ====================


@router.get("/status")
async def get_gateway_status() -> Dict[str, Any]:
    """
    Gateway status and all session statuses.

    Returns:
        {
            "enabled": true,
            "sessions": [
                {"channel": "feishu", "account_id": "default", "mode": "websocket",
                 "status": "connected", "pending": 1, ...}
            ]
        }
    """
    if _channel_manager is None:
        return {"enabled": False, "sessions": []}

    return {"enabled": True, "sessions": _channel_manager.list_sessions()}


# ==================== Pairing ====================


@router.get("/pairing/{channel_id}/{account_id}")
async def list_pending(channel_id: str, account_id: str) -> List[str]:
    """Pending direct-message senders of one account."""
    manager = _require_manager()
    try:
        return manager.pending(channel_id, account_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No session for {channel_id}:{account_id}")


@router.post("/pairing/{channel_id}/{account_id}/approve/{user_id}")
async def approve_pairing(channel_id: str, account_id: str, user_id: str) -> PairingResponse:
    manager = _require_manager()
    try:
        changed = manager.approve(channel_id, account_id, user_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No session for {channel_id}:{account_id}")
    logger.info(
        "Pairing approved via API",
        extra={"channel": channel_id, "account": account_id, "user_id": user_id},
    )
    return PairingResponse(channel=channel_id, account_id=account_id, user_id=user_id, changed=changed)


@router.post("/pairing/{channel_id}/{account_id}/revoke/{user_id}")
async def revoke_pairing(channel_id: str, account_id: str, user_id: str) -> PairingResponse:
    manager = _require_manager()
    try:
        changed = manager.revoke(channel_id, account_id, user_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No session for {channel_id}:{account_id}")
    return PairingResponse(channel=channel_id, account_id=account_id, user_id=user_id, changed=changed)
