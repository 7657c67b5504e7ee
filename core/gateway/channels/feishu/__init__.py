"""
Feishu (Lark) channel

WebSocket push or webhook delivery in, REST out. Direct messages from
unknown senders are held behind an operator pairing step.

Usage:
    from core.gateway.channels.feishu import FeishuChannel, HostCallbacks

    channel = FeishuChannel()
    session = channel.create_inbound(cfg, "default", HostCallbacks(on_message=handle))
    await session.start()
    ...
    await session.stop()
"""

from core.gateway.channel import HostCallbacks
from core.gateway.channels.feishu.config import (
    CAPABILITIES,
    Credential,
    FeishuAccount,
    FeishuConfig,
)
from core.gateway.channels.feishu.outbound import FeishuOutbound
from core.gateway.channels.feishu.pairing import (
    AccessDecision,
    AccessReason,
    PairingState,
    evaluate,
    evaluate_group,
)
from core.gateway.channels.feishu.plugin import META, FeishuChannel, register
from core.gateway.channels.feishu.session import InboundSession, WebSocketSession
from core.gateway.channels.feishu.token import TokenCache
from core.gateway.channels.feishu.transcoder import decode, encode
from core.gateway.channels.feishu.webhook import WebhookSession

__all__ = [
    "AccessDecision",
    "AccessReason",
    "CAPABILITIES",
    "Credential",
    "FeishuAccount",
    "FeishuChannel",
    "FeishuConfig",
    "FeishuOutbound",
    "HostCallbacks",
    "InboundSession",
    "META",
    "PairingState",
    "TokenCache",
    "WebSocketSession",
    "WebhookSession",
    "decode",
    "encode",
    "evaluate",
    "evaluate_group",
    "register",
]
