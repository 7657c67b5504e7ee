"""
Inbound Feishu events

Frames (WebSocket) and webhook bodies are parsed into a small tagged union:
``MessageEvent`` for ``event.message`` payloads and ``UnrecognizedEvent``
for everything else, which keeps the raw payload for forwarding.
"""

import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from core.gateway.exceptions import ProtocolError

# sender id-kind used for messages the bot itself sent
APP_ID_KIND = "app_id"


class EventSender(BaseModel):
    id: str = ""
    id_type: str = "open_id"
    name: Optional[str] = None


class MessageEvent(BaseModel):
    """A message sub-event."""
    kind: Literal["message"] = "message"
    message_id: str
    root_id: Optional[str] = None
    parent_id: Optional[str] = None
    chat_id: str
    chat_type: Literal["p2p", "group"] = "p2p"
    sender: EventSender = Field(default_factory=EventSender)
    message_type: str = "text"
    content: str = ""
    create_time: Optional[str] = None
    update_time: Optional[str] = None
    mentions: List[Dict[str, Any]] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def is_direct(self) -> bool:
        return self.chat_type == "p2p"

    @property
    def mentioned(self) -> bool:
        return bool(self.mentions) or "@_user_" in self.content


class UnrecognizedEvent(BaseModel):
    """Any non-message event, carried opaquely."""
    kind: Literal["other"] = "other"
    payload: Dict[str, Any] = Field(default_factory=dict)


InboundEvent = Union[MessageEvent, UnrecognizedEvent]


def parse_frame(raw: Union[str, bytes]) -> Dict[str, Any]:
    """
    Decode one transport frame into a dict.

    Raises:
        ProtocolError: not JSON, or not a JSON object
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise ProtocolError(f"Unparseable frame: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"Frame is not an object: {type(data).__name__}")
    return data


def _sender_from_envelope(event: Dict[str, Any]) -> Dict[str, Any]:
    # im.message.receive_v1 keeps the sender next to the message
    sender = event.get("sender") or {}
    ids = sender.get("sender_id") or {}
    sender_id = ids.get("open_id") or ids.get("user_id") or ids.get("union_id") or ""
    id_type = "open_id" if ids.get("open_id") else "user_id" if ids.get("user_id") else "union_id"
    if sender.get("sender_type") == "app":
        id_type = APP_ID_KIND
    return {"id": sender_id, "id_type": id_type, "name": sender.get("name")}


def classify(payload: Dict[str, Any]) -> Optional[InboundEvent]:
    """
    Pick out the event carried by a frame/body.

    Returns:
        MessageEvent, UnrecognizedEvent, or None when the payload carries no
        ``event`` at all (heartbeats, acks)

    Raises:
        ProtocolError: ``event.message`` is present but malformed
    """
    event = payload.get("event")
    if not isinstance(event, dict):
        return None

    message = event.get("message")
    if not isinstance(message, dict):
        return UnrecognizedEvent(payload=event)

    fields = {k: v for k, v in message.items() if k not in ("kind", "raw")}
    if "message_type" not in fields and "msg_type" in fields:
        fields["message_type"] = fields["msg_type"]
    if not isinstance(fields.get("sender"), dict):
        fields["sender"] = _sender_from_envelope(event)
    for key in ("create_time", "update_time"):
        if fields.get(key) is not None:
            fields[key] = str(fields[key])
    fields["mentions"] = fields.get("mentions") or []

    try:
        return MessageEvent(**fields, raw=message)
    except (ValidationError, TypeError) as e:
        raise ProtocolError(f"Malformed message event: {e}") from e
