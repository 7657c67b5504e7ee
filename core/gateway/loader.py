"""
Gateway configuration loader and factory

Loads gateway.yaml, resolves environment variables,
creates channel plugins and wires them into a ChannelManager.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import yaml

from logger import get_logger

from core.gateway.channel import HostCallbacks
from core.gateway.manager import ChannelManager
from core.gateway.types import ChannelConfig, GatewayConfig
from utils.app_paths import get_gateway_config_path

logger = get_logger("gateway.loader")

# ${VAR_NAME} environment variable references
_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _resolve_env_vars(value: Any) -> Any:
    """
    Recursively resolve ${VAR_NAME} references in config values.

    Args:
        value: config value (str, dict, list, or primitive)

    Returns:
        value with env vars resolved (unset variables become "")
    """
    if isinstance(value, str):
        def _replace(match):
            var_name = match.group(1)
            env_value = os.environ.get(var_name, "")
            if not env_value:
                logger.debug(f"Environment variable {var_name} not set")
            return env_value
        return _ENV_VAR_PATTERN.sub(_replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def parse_gateway_config(raw: Dict[str, Any]) -> GatewayConfig:
    """Build GatewayConfig from an already-loaded YAML mapping."""
    raw = _resolve_env_vars(raw or {})

    gateway_section = raw.get("gateway", {}) or {}
    enabled = bool(gateway_section.get("enabled", False))

    channels: Dict[str, ChannelConfig] = {}
    for channel_id, channel_data in (raw.get("channels", {}) or {}).items():
        if isinstance(channel_data, dict):
            params = {k: v for k, v in channel_data.items() if k != "enabled"}
            channels[channel_id] = ChannelConfig(
                enabled=bool(channel_data.get("enabled", False)),
                params=params,
            )

    return GatewayConfig(enabled=enabled, channels=channels)


async def load_gateway_config(
    config_path: Optional[Path] = None,
) -> GatewayConfig:
    """
    Load and parse gateway configuration from YAML.

    Args:
        config_path: path to gateway.yaml (defaults to FEISHU_GATEWAY_CONFIG
            or config/gateway.yaml)

    Returns:
        Parsed GatewayConfig (disabled when the file is missing or unreadable)
    """
    path = config_path or get_gateway_config_path()

    if not path.exists():
        logger.info("Gateway config not found, gateway disabled", extra={"path": str(path)})
        return GatewayConfig(enabled=False)

    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
            raw = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load gateway config: {e}", extra={"path": str(path)})
        return GatewayConfig(enabled=False)

    config = parse_gateway_config(raw)

    logger.info(
        "Gateway config loaded",
        extra={
            "enabled": config.enabled,
            "channels": {k: v.enabled for k, v in config.channels.items()},
        },
    )
    return config


def _create_channel(channel_id: str) -> Optional[Any]:
    """
    Create a channel plugin by id.

    Returns:
        channel plugin, or None for unknown channel ids
    """
    if channel_id in ("feishu", "lark"):
        from core.gateway.channels.feishu import FeishuChannel
        return FeishuChannel()

    logger.warning(f"Unknown channel type: {channel_id}")
    return None


async def create_gateway(
    callbacks: HostCallbacks,
    config: Optional[GatewayConfig] = None,
) -> Optional[ChannelManager]:
    """
    Create the channel manager from config.

    Returns:
        ChannelManager (not started) if enabled, None if disabled or empty.
    """
    if config is None:
        config = await load_gateway_config()

    if not config.enabled:
        logger.info("Gateway is disabled")
        return None

    host_config = config.host_config()
    # "lark" is an alias of "feishu"
    lark = host_config["channels"].pop("lark", None)
    if lark is not None:
        host_config["channels"].setdefault("feishu", lark)

    manager = ChannelManager(host_config, callbacks)
    registered = []
    for channel_id in host_config["channels"]:
        channel = _create_channel(channel_id)
        if channel:
            manager.register(channel)
            registered.append(channel_id)

    if not registered:
        logger.warning("Gateway enabled but no channels are configured/enabled")
        return None

    logger.info("Gateway created", extra={"channels": registered})
    return manager
