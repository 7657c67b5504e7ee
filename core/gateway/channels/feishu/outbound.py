"""
Feishu outbound gateway

send_text: render + one send call.
send_media: fetch bytes -> upload -> send a message referencing the handle.

Both return result objects; nothing raises past this boundary.
"""

import mimetypes
import os
from typing import Optional

from logger import get_logger

from core.gateway.channels.feishu.api import FeishuApiClient
from core.gateway.channels.feishu.config import FeishuAccount, FeishuConfig, RenderMode
from core.gateway.channels.feishu.token import TokenCache
from core.gateway.channels.feishu.transcoder import encode, encode_media
from core.gateway.exceptions import GatewayError
from core.gateway.types import (
    DeliveryResult,
    MediaAttachment,
    MediaDeliveryResult,
    SendContext,
)

logger = get_logger("gateway.channels.feishu.outbound")


def receive_id_type(context: SendContext) -> str:
    """Groups are addressed by chat id, direct chats by the user's open id."""
    return "chat_id" if context.conversation_kind == "group" else "open_id"


def recipient_id(context: SendContext) -> str:
    return context.recipient_id or context.conversation_id


class FeishuOutbound:
    """Direct delivery through the open platform message API."""

    delivery_mode = "direct"

    def __init__(self, api: FeishuApiClient, token_cache: TokenCache) -> None:
        self._api = api
        self._token_cache = token_cache

    async def send_text(
        self,
        account: FeishuAccount,
        config: FeishuConfig,
        text: str,
        context: SendContext,
        render_mode: Optional[RenderMode] = None,
    ) -> DeliveryResult:
        """Render ``text`` (config.render_mode unless overridden) and send it."""
        payload = encode(text, render_mode or config.render_mode)
        try:
            token = await self._token_cache.get_token(account)
            message_id = await self._api.send_message(
                account,
                token,
                receive_id_type(context),
                recipient_id(context),
                payload.msg_type,
                payload.wire_content(),
            )
        except GatewayError as e:
            logger.warning(
                "Feishu send_text failed",
                extra={"account": account.account_id, "to": recipient_id(context), "error": str(e)},
            )
            return DeliveryResult(ok=False, error=str(e))
        except Exception as e:
            logger.error(
                "Unexpected error in Feishu send_text",
                extra={"account": account.account_id, "error": str(e)},
                exc_info=True,
            )
            return DeliveryResult(ok=False, error=str(e))

        logger.info(
            "Feishu message sent",
            extra={
                "account": account.account_id,
                "to": recipient_id(context),
                "msg_type": payload.msg_type,
                "message_id": message_id,
            },
        )
        return DeliveryResult(ok=True, message_id=message_id)

    async def send_media(
        self,
        account: FeishuAccount,
        config: FeishuConfig,
        media: MediaAttachment,
        context: SendContext,
    ) -> MediaDeliveryResult:
        """
        Upload then send.

        A failed upload never reaches the send step. A failed send after a
        successful upload is reported as failed; the upload is left in place.
        """
        is_image = media.type == "image"
        filename = media.filename or os.path.basename(media.file.split("?", 1)[0]) or "file"
        mime_type = (
            media.mime_type
            or mimetypes.guess_type(filename)[0]
            or "application/octet-stream"
        )

        # Phase 1: fetch + upload
        try:
            token = await self._token_cache.get_token(account)
            data = await self._api.fetch_media(media.file)
            max_bytes = int(config.media_max_mb * 1024 * 1024)
            if len(data) > max_bytes:
                return MediaDeliveryResult(
                    ok=False,
                    error=f"Media exceeds {config.media_max_mb}MB limit ({len(data)} bytes)",
                )
            media_key = await self._api.upload_media(
                account,
                token,
                "message" if is_image else "file",
                data,
                filename,
                mime_type,
            )
        except Exception as e:
            logger.warning(
                "Feishu media upload failed",
                extra={"account": account.account_id, "file": media.file, "error": str(e)},
            )
            return MediaDeliveryResult(ok=False, error=str(e))

        # Phase 2: send the message referencing the upload
        payload = encode_media("image" if is_image else "file", media_key)
        try:
            message_id = await self._api.send_message(
                account,
                token,
                receive_id_type(context),
                recipient_id(context),
                payload.msg_type,
                payload.wire_content(),
            )
        except Exception as e:
            logger.warning(
                "Feishu media send failed after upload",
                extra={"account": account.account_id, "media_key": media_key, "error": str(e)},
            )
            return MediaDeliveryResult(ok=False, error=str(e), media_key=media_key)

        logger.info(
            "Feishu media sent",
            extra={"account": account.account_id, "media_key": media_key, "message_id": message_id},
        )
        return MediaDeliveryResult(ok=True, message_id=message_id, media_key=media_key)
