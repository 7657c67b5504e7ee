"""
Application paths

Two kinds of paths:
- bundle_dir: read-only resources shipped with the code (config/gateway.yaml)
- user_data_dir: writable data (logs)

Both can be overridden from the environment so the gateway can run from a
read-only install location.
"""

import os
from pathlib import Path
from typing import Optional

APP_NAME = "feishu-gateway"

_user_data_dir: Optional[Path] = None


def get_bundle_dir() -> Path:
    """Project root (utils/app_paths.py -> two levels up)."""
    return Path(__file__).parent.parent


def get_user_data_dir() -> Path:
    """
    Writable data directory.

    Priority:
    1. FEISHU_GATEWAY_HOME environment variable
    2. ~/.local/share/feishu-gateway
    """
    global _user_data_dir
    if _user_data_dir is not None:
        return _user_data_dir

    env_dir = os.getenv("FEISHU_GATEWAY_HOME")
    if env_dir:
        _user_data_dir = Path(env_dir).expanduser()
    else:
        _user_data_dir = Path.home() / ".local" / "share" / APP_NAME
    return _user_data_dir


def get_logs_dir() -> Path:
    return get_user_data_dir() / "logs"


def get_gateway_config_path() -> Path:
    """gateway.yaml location: FEISHU_GATEWAY_CONFIG or <bundle>/config/gateway.yaml."""
    env_path = os.getenv("FEISHU_GATEWAY_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return get_bundle_dir() / "config" / "gateway.yaml"
