"""
Feishu channel configuration and account models

Host config shape (gateway.yaml ``channels.feishu``)::

    channels:
      feishu:
        dm_policy: pairing
        render_mode: auto
        accounts:
          default:
            app_id: cli_xxx
            app_secret: ${FEISHU_APP_SECRET}
            domain: feishu
            # any FeishuConfig field may be overridden per account
"""

import asyncio
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, PrivateAttr

from core.gateway.types import ChannelCapabilities, MediaCapabilities

DEFAULT_ACCOUNT_ID = "default"

DOMAIN_HOSTS = {
    "feishu": "open.feishu.cn",
    "lark": "open.larksuite.com",
}

TOKEN_EXPIRY_SKEW_MS = 60_000

DmPolicy = Literal["pairing", "open", "allowlist"]
GroupPolicy = Literal["open", "allowlist", "disabled"]
RenderMode = Literal["auto", "raw", "card"]
ConnectionMode = Literal["websocket", "webhook"]


class FeishuConfig(BaseModel):
    """Channel behaviour settings."""
    connection_mode: ConnectionMode = "websocket"
    dm_policy: DmPolicy = "pairing"
    allow_from: List[str] = Field(default_factory=list, description="DM allowlist seed")
    group_policy: GroupPolicy = "open"
    group_allow_from: List[str] = Field(default_factory=list, description="Allowed group chat ids")
    require_mention: bool = False
    media_max_mb: float = 20.0
    render_mode: RenderMode = "auto"
    verification_token: Optional[str] = Field(None, description="Webhook signing secret")
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 3000
    webhook_path: str = "/webhook"
    reconnect_delay_ms: int = 5000
    resolve_sender_names: bool = False


class Credential(BaseModel):
    """Tenant access token and its absolute expiry."""
    token: Optional[str] = None
    expires_at_ms: Optional[int] = None

    def is_fresh(self, now_ms: int, skew_ms: int = TOKEN_EXPIRY_SKEW_MS) -> bool:
        if not self.token or self.expires_at_ms is None:
            return False
        return self.expires_at_ms - now_ms >= skew_ms


class FeishuAccount(BaseModel):
    """
    One bot identity.

    Immutable except for the embedded credential, which only
    TokenCache mutates.
    """
    account_id: str = DEFAULT_ACCOUNT_ID
    app_id: str = ""
    app_secret: str = ""
    domain: Literal["feishu", "lark"] = "feishu"
    credential: Credential = Field(default_factory=Credential)

    _refresh: Optional[asyncio.Future] = PrivateAttr(default=None)

    @property
    def host(self) -> str:
        return DOMAIN_HOSTS[self.domain]

    @property
    def base_url(self) -> str:
        return f"https://{self.host}"


def _channel_section(cfg: Dict[str, Any]) -> Dict[str, Any]:
    return ((cfg or {}).get("channels") or {}).get("feishu") or {}


def list_account_ids(cfg: Dict[str, Any]) -> List[str]:
    """Configured account ids under channels.feishu.accounts."""
    return list((_channel_section(cfg).get("accounts") or {}).keys())


def resolve_account(cfg: Dict[str, Any], account_id: Optional[str] = None) -> FeishuAccount:
    """
    Build the account for ``account_id`` (default: "default").

    An unknown id resolves to an account with empty credentials, matching
    the host contract of always returning an account object.
    """
    account_id = account_id or DEFAULT_ACCOUNT_ID
    raw = (_channel_section(cfg).get("accounts") or {}).get(account_id) or {}
    return FeishuAccount(
        account_id=account_id,
        app_id=str(raw.get("app_id", "")),
        app_secret=str(raw.get("app_secret", "")),
        domain=raw.get("domain", "feishu"),
    )


def resolve_config(cfg: Dict[str, Any], account_id: Optional[str] = None) -> FeishuConfig:
    """Channel-level settings with per-account overrides applied."""
    section = _channel_section(cfg)
    merged = {k: v for k, v in section.items() if k != "accounts" and k in FeishuConfig.model_fields}
    account_raw = (section.get("accounts") or {}).get(account_id or DEFAULT_ACCOUNT_ID) or {}
    merged.update({k: v for k, v in account_raw.items() if k in FeishuConfig.model_fields})
    for key in ("allow_from", "group_allow_from"):
        if key in merged:
            merged[key] = [str(v) for v in merged[key] or []]
    return FeishuConfig(**merged)


CAPABILITIES = ChannelCapabilities(
    chat_types=["direct", "group"],
    media=MediaCapabilities(images=True, files=True),
    reactions=False,
    threads=False,
    mentions=True,
    reply_context=True,
)
