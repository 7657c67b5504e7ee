"""
Utility module

Application path helpers.
"""

from utils.app_paths import get_gateway_config_path, get_logs_dir, get_user_data_dir

__all__ = [
    "get_gateway_config_path",
    "get_logs_dir",
    "get_user_data_dir",
]
