"""
Multi-channel gateway

Receives events from external messaging platforms, normalizes them for the
host and sends the host's replies back out.

Architecture:
    Channel plugin (Feishu/Lark)
        → InboundSession (WebSocket or webhook, pairing gate)
            → HostCallbacks (on_message / on_event / on_status)
        → Outbound gateway (text / media)
    ChannelManager (one session per configured account)

Usage:
    from core.gateway import HostCallbacks, create_gateway

    manager = await create_gateway(HostCallbacks(on_message=handle))
    await manager.start_all()
    ...
    await manager.stop_all()
"""

from core.gateway.channel import HostCallbacks, InboundAdapter, OutboundAdapter
from core.gateway.loader import create_gateway, load_gateway_config
from core.gateway.manager import ChannelManager
from core.gateway.types import (
    ChannelConfig,
    ChannelStatus,
    DeliveryResult,
    GatewayConfig,
    MediaAttachment,
    NormalizedMessage,
    SendContext,
    StatusUpdate,
)

__all__ = [
    "ChannelConfig",
    "ChannelManager",
    "ChannelStatus",
    "DeliveryResult",
    "GatewayConfig",
    "HostCallbacks",
    "InboundAdapter",
    "MediaAttachment",
    "NormalizedMessage",
    "OutboundAdapter",
    "SendContext",
    "StatusUpdate",
    "create_gateway",
    "load_gateway_config",
]
