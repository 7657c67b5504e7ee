"""
OutboundGateway: text sends and two-phase media sends.
"""

import json

import httpx
import pytest

from core.gateway.channels.feishu.config import FeishuConfig
from core.gateway.channels.feishu.outbound import FeishuOutbound, receive_id_type
from core.gateway.types import MediaAttachment, SendContext

MESSAGES_PATH = "/open-apis/im/v1/messages"
IMAGES_PATH = "/open-apis/im/v1/images"

GROUP = SendContext(conversation_id="oc_group", conversation_kind="group")
DIRECT = SendContext(conversation_id="oc_dm", conversation_kind="direct", recipient_id="ou_alice")


@pytest.fixture
def outbound(api, token_cache) -> FeishuOutbound:
    return FeishuOutbound(api, token_cache)


class TestReceiveIdType:

    def test_group_uses_chat_id(self):
        assert receive_id_type(GROUP) == "chat_id"

    def test_direct_uses_open_id(self):
        assert receive_id_type(DIRECT) == "open_id"


class TestSendText:

    @pytest.mark.asyncio
    async def test_plain_text_to_group(self, outbound, account, platform):
        result = await outbound.send_text(account, FeishuConfig(), "hello", GROUP)

        assert result.ok
        assert result.message_id == "om_sent"
        request = platform.calls(MESSAGES_PATH)[0]
        assert request.url.params["receive_id_type"] == "chat_id"
        assert request.headers["authorization"] == "Bearer t-cached"
        body = platform.json_calls(MESSAGES_PATH)[0]
        assert body["receive_id"] == "oc_group"
        assert body["msg_type"] == "text"
        assert json.loads(body["content"]) == {"text": "hello"}

    @pytest.mark.asyncio
    async def test_direct_chat_addresses_the_user(self, outbound, account, platform):
        await outbound.send_text(account, FeishuConfig(), "hi", DIRECT)

        request = platform.calls(MESSAGES_PATH)[0]
        assert request.url.params["receive_id_type"] == "open_id"
        assert platform.json_calls(MESSAGES_PATH)[0]["receive_id"] == "ou_alice"

    @pytest.mark.asyncio
    async def test_code_fence_goes_out_as_card(self, outbound, account, platform):
        await outbound.send_text(account, FeishuConfig(), "```\nx = 1\n```", GROUP)

        body = platform.json_calls(MESSAGES_PATH)[0]
        assert body["msg_type"] == "interactive"
        assert len(json.loads(body["content"])["elements"]) == 3

    @pytest.mark.asyncio
    async def test_render_mode_override(self, outbound, account, platform):
        await outbound.send_text(account, FeishuConfig(render_mode="card"), "plain", GROUP, render_mode="raw")
        assert platform.json_calls(MESSAGES_PATH)[0]["msg_type"] == "text"

    @pytest.mark.asyncio
    async def test_platform_error_is_reported_not_raised(self, outbound, account, platform):
        platform.respond(MESSAGES_PATH, {"code": 230002, "msg": "bot not in chat"})

        result = await outbound.send_text(account, FeishuConfig(), "hello", GROUP)

        assert not result.ok
        assert "bot not in chat" in result.error

    @pytest.mark.asyncio
    async def test_network_error_is_reported(self, outbound, account, platform):
        platform.respond(MESSAGES_PATH, httpx.ConnectError("connection refused"))

        result = await outbound.send_text(account, FeishuConfig(), "hello", GROUP)

        assert not result.ok
        assert result.message_id is None

    @pytest.mark.asyncio
    async def test_token_failure_is_reported(self, outbound, account, platform):
        account.credential.token = None
        platform.respond(
            "/open-apis/auth/v3/tenant_access_token/internal",
            {"code": 10003, "msg": "invalid app_secret"},
        )

        result = await outbound.send_text(account, FeishuConfig(), "hello", GROUP)

        assert not result.ok
        assert platform.calls(MESSAGES_PATH) == []


class TestSendMedia:

    @pytest.mark.asyncio
    async def test_image_upload_then_send(self, outbound, account, platform):
        media = MediaAttachment(type="image", file="https://media.example.com/cat.png")

        result = await outbound.send_media(account, FeishuConfig(), media, GROUP)

        assert result.ok
        assert result.media_key == "img_key"
        assert result.message_id == "om_sent"

        upload = platform.calls(IMAGES_PATH)[0]
        assert upload.headers["content-type"].startswith("multipart/form-data")
        assert b'name="image_type"' in upload.content
        assert b"message" in upload.content
        assert platform.media in upload.content

        body = platform.json_calls(MESSAGES_PATH)[0]
        assert body["msg_type"] == "image"
        assert json.loads(body["content"]) == {"image_key": "img_key"}

    @pytest.mark.asyncio
    async def test_local_file_is_sent_as_file_message(self, outbound, account, platform, tmp_path):
        path = tmp_path / "report.pdf"
        path.write_bytes(b"%PDF-1.4 fake")
        media = MediaAttachment(type="file", file=str(path))

        result = await outbound.send_media(account, FeishuConfig(), media, DIRECT)

        assert result.ok
        upload = platform.calls(IMAGES_PATH)[0]
        assert b"%PDF-1.4 fake" in upload.content
        assert b'filename="report.pdf"' in upload.content
        body = platform.json_calls(MESSAGES_PATH)[0]
        assert body["msg_type"] == "file"
        assert json.loads(body["content"]) == {"file_key": "img_key"}

    @pytest.mark.asyncio
    async def test_failed_upload_never_sends(self, outbound, account, platform):
        platform.respond(IMAGES_PATH, {"code": 234001, "msg": "invalid image"})
        media = MediaAttachment(type="image", file="https://media.example.com/cat.png")

        result = await outbound.send_media(account, FeishuConfig(), media, GROUP)

        assert not result.ok
        assert result.media_key is None
        assert "invalid image" in result.error
        assert platform.calls(MESSAGES_PATH) == []

    @pytest.mark.asyncio
    async def test_unreadable_source_never_uploads(self, outbound, account, platform, tmp_path):
        media = MediaAttachment(type="file", file=str(tmp_path / "missing.bin"))

        result = await outbound.send_media(account, FeishuConfig(), media, GROUP)

        assert not result.ok
        assert platform.calls(IMAGES_PATH) == []
        assert platform.calls(MESSAGES_PATH) == []

    @pytest.mark.asyncio
    async def test_send_failure_after_upload_keeps_media_key(self, outbound, account, platform):
        platform.respond(MESSAGES_PATH, {"code": 230002, "msg": "bot not in chat"})
        media = MediaAttachment(type="image", file="https://media.example.com/cat.png")

        result = await outbound.send_media(account, FeishuConfig(), media, GROUP)

        assert not result.ok
        assert result.media_key == "img_key"
        assert len(platform.calls(IMAGES_PATH)) == 1

    @pytest.mark.asyncio
    async def test_oversized_media_is_rejected_before_upload(self, outbound, account, platform):
        platform.media = b"x" * 2048
        media = MediaAttachment(type="image", file="https://media.example.com/big.png")
        config = FeishuConfig(media_max_mb=1 / 1024)

        result = await outbound.send_media(account, config, media, GROUP)

        assert not result.ok
        assert "limit" in result.error
        assert platform.calls(IMAGES_PATH) == []
