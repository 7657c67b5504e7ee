"""
Channel adapter protocols

Defines the host-facing interfaces a channel implementation exposes:
inbound sessions (receive) and outbound gateways (send).
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, runtime_checkable

from core.gateway.types import (
    ChannelCapabilities,
    ChannelStatus,
    DeliveryResult,
    MediaAttachment,
    MediaDeliveryResult,
    NormalizedMessage,
    SendContext,
    StatusUpdate,
)

# Host callbacks
OnMessageCallback = Callable[[NormalizedMessage], Awaitable[None]]
OnEventCallback = Callable[[Dict[str, Any]], Awaitable[None]]
OnStatusCallback = Callable[[StatusUpdate], Awaitable[None]]


async def _ignore(_: Any) -> None:
    return None


@dataclass
class HostCallbacks:
    """
    Observer registration for one inbound session.

    Each callback is awaited in frame order; a callback that raises is
    logged by the session and does not stop it.
    """
    on_message: OnMessageCallback = _ignore
    on_event: OnEventCallback = _ignore
    on_status: OnStatusCallback = _ignore


@runtime_checkable
class InboundAdapter(Protocol):
    """
    Receive side of a channel.

    One instance per (account, configuration); created by the channel for
    each start so sessions never share hidden state.
    """

    capabilities: ChannelCapabilities

    async def start(self) -> None:
        """Connect to the platform and begin delivering events to the callbacks."""
        ...

    async def stop(self) -> None:
        """Stop receiving. Safe before start() and idempotent."""
        ...

    async def verify_signature(self, payload: str, signature: str, timestamp: str) -> bool:
        """Check a signed webhook delivery."""
        ...

    def get_status(self) -> ChannelStatus:
        ...


@runtime_checkable
class OutboundAdapter(Protocol):
    """Send side of a channel. Results are returned, never raised."""

    async def send_text(
        self,
        account: Any,
        config: Any,
        text: str,
        context: SendContext,
        render_mode: Optional[str] = None,
    ) -> DeliveryResult:
        ...

    async def send_media(
        self,
        account: Any,
        config: Any,
        media: MediaAttachment,
        context: SendContext,
    ) -> MediaDeliveryResult:
        ...
