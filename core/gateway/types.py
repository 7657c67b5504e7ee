"""
Gateway message types

Host-facing message, delivery and capability models.
Channel adapters convert platform-specific payloads to/from these types.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ConversationKind = Literal["direct", "group"]


class ChannelStatus(str, Enum):
    """Inbound session status as reported to the host."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    READY = "ready"
    STOPPED = "stopped"


class StatusUpdate(BaseModel):
    """Payload of the host's on_status callback."""
    status: ChannelStatus
    account_id: str = "default"
    detail: Optional[str] = None


class Sender(BaseModel):
    """Inbound message sender info."""
    id: str = Field(..., description="Platform user ID")
    name: str = Field("Unknown", description="Display name")


class NormalizedMessage(BaseModel):
    """
    Unified inbound message handed to the host.

    Channel adapters convert platform-specific events into this format.
    """
    model_config = {"frozen": True}

    id: str = Field(..., description="Platform message ID")
    kind: str = Field(..., description="Platform message type, e.g. 'text', 'image'")
    text: str = ""
    sender: Sender
    conversation_id: str
    conversation_kind: ConversationKind = "direct"
    timestamp_ms: int = Field(..., description="Message timestamp (epoch milliseconds)")
    reply_to_id: Optional[str] = Field(None, description="Root or parent message ID")
    raw: Optional[Any] = Field(None, exclude=True, description="Raw platform event")


class MediaAttachment(BaseModel):
    """Outbound media reference."""
    type: Literal["image", "audio", "video", "file"] = "file"
    file: str = Field(..., description="http(s) URL or local path of the payload")
    mime_type: Optional[str] = None
    filename: Optional[str] = None


class SendContext(BaseModel):
    """Addressing for one outbound call."""
    conversation_id: str
    conversation_kind: ConversationKind = "direct"
    recipient_id: Optional[str] = None
    reply_to_id: Optional[str] = None


class DeliveryResult(BaseModel):
    """Outcome of a text send. Never raised, always returned."""
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class MediaDeliveryResult(DeliveryResult):
    """Outcome of a media send (upload + send)."""
    media_key: Optional[str] = None


class MediaCapabilities(BaseModel):
    images: bool = False
    files: bool = False


class ChannelCapabilities(BaseModel):
    """Capability descriptor exposed to the host."""
    chat_types: List[ConversationKind] = Field(default_factory=lambda: ["direct"])
    media: MediaCapabilities = Field(default_factory=MediaCapabilities)
    reactions: bool = False
    threads: bool = False
    mentions: bool = False
    reply_context: bool = False


class ChannelMeta(BaseModel):
    """Display metadata for the channel picker."""
    id: str
    label: str
    selection_label: str
    docs_path: str
    blurb: str
    aliases: List[str] = Field(default_factory=list)


class ChannelConfig(BaseModel):
    """Configuration for a single channel in gateway.yaml."""
    enabled: bool = False
    params: Dict[str, Any] = Field(default_factory=dict, description="Channel-specific params")


class GatewayConfig(BaseModel):
    """Full gateway configuration."""
    enabled: bool = False
    channels: Dict[str, ChannelConfig] = Field(default_factory=dict)

    def host_config(self) -> Dict[str, Any]:
        """Host-shaped config: {"channels": {channel_id: params}}."""
        return {
            "channels": {
                channel_id: channel.params
                for channel_id, channel in self.channels.items()
                if channel.enabled
            }
        }
