"""
Feishu content transcoding

- decode: MessageEvent -> NormalizedMessage (or None for the bot's own messages)
- encode: outbound text -> text or interactive card payload
"""

import json
import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from logger import get_logger

from core.gateway.channels.feishu.config import FeishuAccount, RenderMode
from core.gateway.channels.feishu.events import APP_ID_KIND, MessageEvent
from core.gateway.types import NormalizedMessage, Sender

logger = get_logger("gateway.channels.feishu.transcoder")

CODE_FENCE = "```"
TABLE_PIPE = "|"


class OutboundPayload(BaseModel):
    """Message body for the send API."""
    msg_type: str
    content: Dict[str, Any] = Field(default_factory=dict)

    def wire_content(self) -> str:
        """The send API takes ``content`` as a JSON-encoded string."""
        return json.dumps(self.content, ensure_ascii=False)


def extract_text(event: MessageEvent) -> str:
    """Pull ``text`` out of the nested JSON content, else ``[<message_type>]``."""
    try:
        content = json.loads(event.content)
    except (json.JSONDecodeError, TypeError):
        return f"[{event.message_type}]"
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return f"[{event.message_type}]"


def _timestamp_ms(create_time: Optional[str]) -> int:
    try:
        return int(create_time)
    except (TypeError, ValueError):
        return int(time.time() * 1000)


def decode(event: MessageEvent, account: FeishuAccount) -> Optional[NormalizedMessage]:
    """
    Convert a platform message event into the host's message model.

    Returns None for messages sent by an application identity (our own
    replies echoed back). Never raises on content problems.
    """
    if event.sender.id_type == APP_ID_KIND:
        logger.debug(
            "Dropping message sent by application identity",
            extra={"account": account.account_id, "message_id": event.message_id},
        )
        return None

    return NormalizedMessage(
        id=event.message_id,
        kind=event.message_type,
        text=extract_text(event),
        sender=Sender(id=event.sender.id, name=event.sender.name or "Unknown"),
        conversation_id=event.chat_id,
        conversation_kind="direct" if event.chat_type == "p2p" else "group",
        timestamp_ms=_timestamp_ms(event.create_time),
        reply_to_id=event.root_id or event.parent_id or None,
        raw=event.raw,
    )


def wants_card(text: str) -> bool:
    """Code block or table heuristic used by ``render_mode=auto``."""
    return CODE_FENCE in text or TABLE_PIPE in text


def _line_element(line: str) -> Dict[str, Any]:
    # headings and list items are not styled differently from plain lines
    return {"tag": "div", "text": {"tag": "lark_md", "content": line}}


def render_card(text: str) -> Dict[str, Any]:
    """One div block per line, in order, content verbatim."""
    return {
        "config": {"wide_screen_mode": True},
        "elements": [_line_element(line) for line in text.split("\n")],
    }


def encode(text: str, render_mode: RenderMode = "auto") -> OutboundPayload:
    """
    Render outbound text.

    raw -> text message; card -> interactive card; auto -> card only when
    the text contains a code fence or a pipe.
    """
    if render_mode == "card" or (render_mode == "auto" and wants_card(text)):
        return OutboundPayload(msg_type="interactive", content=render_card(text))
    return OutboundPayload(msg_type="text", content={"text": text})


def encode_media(media_type: str, media_key: str) -> OutboundPayload:
    """Message referencing an uploaded media handle."""
    if media_type == "image":
        return OutboundPayload(msg_type="image", content={"image_key": media_key})
    return OutboundPayload(msg_type="file", content={"file_key": media_key})
