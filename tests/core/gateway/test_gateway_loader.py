"""
Gateway config loading and manager construction.
"""

import pytest
import yaml

from core.gateway.channel import HostCallbacks
from core.gateway.loader import (
    _resolve_env_vars,
    create_gateway,
    load_gateway_config,
    parse_gateway_config,
)
from core.gateway.types import ChannelConfig, GatewayConfig

YAML = """
gateway:
  enabled: true
channels:
  feishu:
    enabled: true
    dm_policy: open
    accounts:
      default:
        app_id: ${TEST_FEISHU_APP_ID}
        app_secret: plain
  telegram:
    enabled: false
"""


class TestEnvVars:

    def test_nested_values_are_resolved(self, monkeypatch):
        monkeypatch.setenv("TEST_FEISHU_APP_ID", "cli_env")
        raw = {"a": "${TEST_FEISHU_APP_ID}", "b": ["x-${TEST_FEISHU_APP_ID}"], "c": 3}

        assert _resolve_env_vars(raw) == {"a": "cli_env", "b": ["x-cli_env"], "c": 3}

    def test_unset_variable_becomes_empty(self, monkeypatch):
        monkeypatch.delenv("TEST_FEISHU_UNSET", raising=False)
        assert _resolve_env_vars("${TEST_FEISHU_UNSET}") == ""


class TestParse:

    def test_enabled_flags_and_params(self, monkeypatch):
        monkeypatch.setenv("TEST_FEISHU_APP_ID", "cli_env")
        config = parse_gateway_config(yaml.safe_load(YAML))

        assert config.enabled
        assert config.channels["feishu"].enabled
        assert not config.channels["telegram"].enabled
        assert config.channels["feishu"].params["accounts"]["default"]["app_id"] == "cli_env"
        assert "enabled" not in config.channels["feishu"].params

    def test_host_config_keeps_enabled_channels_only(self):
        config = GatewayConfig(
            enabled=True,
            channels={
                "feishu": ChannelConfig(enabled=True, params={"dm_policy": "open"}),
                "telegram": ChannelConfig(enabled=False),
            },
        )
        assert config.host_config() == {"channels": {"feishu": {"dm_policy": "open"}}}

    def test_empty_document(self):
        assert not parse_gateway_config(None).enabled


class TestLoad:

    @pytest.mark.asyncio
    async def test_load_from_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_FEISHU_APP_ID", "cli_env")
        path = tmp_path / "gateway.yaml"
        path.write_text(YAML, encoding="utf-8")

        config = await load_gateway_config(path)

        assert config.enabled
        assert config.channels["feishu"].params["dm_policy"] == "open"

    @pytest.mark.asyncio
    async def test_env_selects_config_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text(YAML, encoding="utf-8")
        monkeypatch.setenv("FEISHU_GATEWAY_CONFIG", str(path))

        assert (await load_gateway_config()).enabled

    @pytest.mark.asyncio
    async def test_missing_file_disables_gateway(self, tmp_path):
        assert not (await load_gateway_config(tmp_path / "absent.yaml")).enabled

    @pytest.mark.asyncio
    async def test_invalid_yaml_disables_gateway(self, tmp_path):
        path = tmp_path / "gateway.yaml"
        path.write_text("gateway: [unclosed", encoding="utf-8")

        assert not (await load_gateway_config(path)).enabled


class TestCreateGateway:

    @pytest.mark.asyncio
    async def test_disabled_returns_none(self):
        assert await create_gateway(HostCallbacks(), GatewayConfig(enabled=False)) is None

    @pytest.mark.asyncio
    async def test_feishu_channel_is_registered(self):
        config = GatewayConfig(
            enabled=True,
            channels={"feishu": ChannelConfig(enabled=True, params={"accounts": {"default": {}}})},
        )
        manager = await create_gateway(HostCallbacks(), config)

        assert manager is not None
        assert manager.get_channel("feishu") is not None

    @pytest.mark.asyncio
    async def test_lark_alias_maps_to_feishu(self):
        config = GatewayConfig(
            enabled=True,
            channels={"lark": ChannelConfig(enabled=True, params={"accounts": {"intl": {"domain": "lark"}}})},
        )
        manager = await create_gateway(HostCallbacks(), config)

        channel = manager.get_channel("feishu")
        assert channel.list_account_ids(manager._host_config) == ["intl"]
        assert manager.get_channel("lark") is None

    @pytest.mark.asyncio
    async def test_only_unknown_channels_returns_none(self):
        config = GatewayConfig(enabled=True, channels={"smoke_signals": ChannelConfig(enabled=True)})
        assert await create_gateway(HostCallbacks(), config) is None
