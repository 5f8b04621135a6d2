"""
Bridge Configuration Module
"""

from .schema import BridgeConfig, GistConfig, LoggingConfig, TelegramConfig, WebConfig, WhatsAppConfig
from .loader import interpolate_env_vars, load_config, load_config_from_file

__all__ = [
    "BridgeConfig",
    "GistConfig",
    "LoggingConfig",
    "TelegramConfig",
    "WebConfig",
    "WhatsAppConfig",
    "interpolate_env_vars",
    "load_config",
    "load_config_from_file",
]
