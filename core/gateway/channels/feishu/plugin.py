"""
Feishu channel plugin

Bundles everything the host gateway needs: display metadata, capability
descriptor, account resolution, the outbound gateway and a factory for
inbound sessions. Inbound sessions are created per start, never stored
at module level.
"""

from typing import Any, Dict, List, Optional, Protocol

from logger import get_logger

from core.gateway.channel import HostCallbacks
from core.gateway.channels.feishu import config as feishu_config
from core.gateway.channels.feishu.api import FeishuApiClient
from core.gateway.channels.feishu.config import (
    CAPABILITIES,
    ConnectionMode,
    FeishuAccount,
    FeishuConfig,
)
from core.gateway.channels.feishu.outbound import FeishuOutbound
from core.gateway.channels.feishu.session import Connector, InboundSession, WebSocketSession
from core.gateway.channels.feishu.token import TokenCache
from core.gateway.channels.feishu.users import UserDirectory
from core.gateway.channels.feishu.webhook import WebhookSession
from core.gateway.types import ChannelMeta

logger = get_logger("gateway.channels.feishu")

META = ChannelMeta(
    id="feishu",
    label="Feishu/Lark",
    selection_label="Feishu/Lark (飞书)",
    docs_path="/channels/feishu",
    blurb="飞书/Lark messaging channel",
    aliases=["lark"],
)


class FeishuChannel:
    """
    Feishu/Lark channel.

    Accounts resolved through one channel instance are cached by id so
    inbound sessions and outbound sends share a single credential per
    bot identity.
    """

    meta = META
    capabilities = CAPABILITIES

    def __init__(
        self,
        api: Optional[FeishuApiClient] = None,
        token_cache: Optional[TokenCache] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.api = api or FeishuApiClient()
        self.token_cache = token_cache or TokenCache(self.api)
        self.outbound = FeishuOutbound(self.api, self.token_cache)
        self.users = UserDirectory(self.api, self.token_cache)
        self._connector = connector
        self._accounts: Dict[str, FeishuAccount] = {}

    @property
    def id(self) -> str:
        return self.meta.id

    @property
    def display_name(self) -> str:
        return self.meta.label

    def list_account_ids(self, cfg: Dict[str, Any]) -> List[str]:
        return feishu_config.list_account_ids(cfg)

    def resolve_account(self, cfg: Dict[str, Any], account_id: Optional[str] = None) -> FeishuAccount:
        resolved = feishu_config.resolve_account(cfg, account_id)
        cached = self._accounts.get(resolved.account_id)
        if cached is not None and (cached.app_id, cached.app_secret, cached.domain) == (
            resolved.app_id,
            resolved.app_secret,
            resolved.domain,
        ):
            return cached
        self._accounts[resolved.account_id] = resolved
        return resolved

    def resolve_config(self, cfg: Dict[str, Any], account_id: Optional[str] = None) -> FeishuConfig:
        return feishu_config.resolve_config(cfg, account_id)

    def create_inbound(
        self,
        cfg: Dict[str, Any],
        account_id: Optional[str] = None,
        callbacks: Optional[HostCallbacks] = None,
        mode: Optional[ConnectionMode] = None,
    ) -> InboundSession:
        """Build a fresh session for one account (WebSocket unless configured otherwise)."""
        account = self.resolve_account(cfg, account_id)
        config = self.resolve_config(cfg, account.account_id)
        mode = mode or config.connection_mode
        common = dict(
            callbacks=callbacks,
            api=self.api,
            token_cache=self.token_cache,
            outbound=self.outbound,
            users=self.users,
        )
        if mode == "webhook":
            return WebhookSession(account, config, **common)
        return WebSocketSession(account, config, connector=self._connector, **common)

    async def close(self) -> None:
        await self.api.close()


class ChannelHost(Protocol):
    def register_channel(self, channel: Any) -> None:
        ...


def register(host: ChannelHost, channel: Optional[FeishuChannel] = None) -> FeishuChannel:
    """Register the Feishu channel with a host gateway."""
    channel = channel or FeishuChannel()
    host.register_channel(channel)
    logger.info("Channel registered", extra={"channel": channel.id})
    return channel
