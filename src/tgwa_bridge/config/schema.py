"""
Bridge Configuration Schema

Defines the configuration structure for the Telegram -> WhatsApp bridge.
All configuration can be specified via bridge.yaml or environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

DEFAULT_AUTH_DIR = "/tmp/auth_info_baileys"
DEFAULT_ADMIN_TOKEN = "admin-token"
DEFAULT_PORT = 3000
DEFAULT_LOG_FILE = "/tmp/tgwa-bridge.log"


@dataclass
class TelegramConfig:
    """Telegram source account and bot credentials"""
    bot_token: Optional[str] = None
    source: Optional[str] = None
    api_url: str = "https://api.telegram.org"


@dataclass
class WhatsAppConfig:
    """Destination group and bridge endpoints"""
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    auth_dir: str = DEFAULT_AUTH_DIR
    bridge_http_url: str = "http://localhost:3001"
    bridge_ws_url: str = "ws://localhost:3001/ws"
    restart_base_delay: float = 1.0
    restart_max_delay: float = 60.0


@dataclass
class GistConfig:
    """Remote credential store (GitHub Gist)"""
    token: Optional[str] = None
    gist_id: Optional[str] = None
    api_url: str = "https://api.github.com"
    debounce_seconds: float = 2.5

    @property
    def configured(self) -> bool:
        return bool(self.token and self.gist_id)


@dataclass
class WebConfig:
    """Control surface"""
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    admin_token: str = DEFAULT_ADMIN_TOKEN


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = DEFAULT_LOG_FILE


@dataclass
class BridgeConfig:
    """
    Central configuration for one bridge process.

    Example bridge.yaml:
    ```yaml
    telegram:
      bot_token: "${TELEGRAM_BOT_TOKEN}"
      source: "${TELEGRAM_SOURCE:-}"

    whatsapp:
      group_id: "${WA_GROUP_ID:-}"
      group_name: "${WA_GROUP_NAME:-}"
      auth_dir: "${AUTH_DIR:-/tmp/auth_info_baileys}"

    gist:
      token: "${GITHUB_TOKEN:-}"
      gist_id: "${GIST_ID:-}"

    web:
      port: 3000
      admin_token: "${ADMIN_TOKEN:-admin-token}"
    ```
    """
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)
    gist: GistConfig = field(default_factory=GistConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Create BridgeConfig from dictionary (e.g., parsed YAML)"""
        tg_data = data.get("telegram") or {}
        wa_data = data.get("whatsapp") or {}
        gist_data = data.get("gist") or {}
        web_data = data.get("web") or {}
        log_data = data.get("logging") or {}

        return cls(
            telegram=TelegramConfig(
                bot_token=tg_data.get("bot_token") or None,
                source=tg_data.get("source") or None,
                api_url=tg_data.get("api_url", "https://api.telegram.org"),
            ),
            whatsapp=WhatsAppConfig(
                group_id=_opt_str(wa_data.get("group_id")),
                group_name=wa_data.get("group_name") or None,
                auth_dir=wa_data.get("auth_dir") or DEFAULT_AUTH_DIR,
                bridge_http_url=wa_data.get("bridge_http_url", "http://localhost:3001"),
                bridge_ws_url=wa_data.get("bridge_ws_url", "ws://localhost:3001/ws"),
                restart_base_delay=float(wa_data.get("restart_base_delay", 1.0)),
                restart_max_delay=float(wa_data.get("restart_max_delay", 60.0)),
            ),
            gist=GistConfig(
                token=gist_data.get("token") or None,
                gist_id=gist_data.get("gist_id") or None,
                api_url=gist_data.get("api_url", "https://api.github.com"),
                debounce_seconds=float(gist_data.get("debounce_seconds", 2.5)),
            ),
            web=WebConfig(
                host=web_data.get("host", "0.0.0.0"),
                port=int(web_data.get("port") or DEFAULT_PORT),
                admin_token=web_data.get("admin_token") or DEFAULT_ADMIN_TOKEN,
            ),
            logging=LoggingConfig(
                level=str(log_data.get("level") or "INFO").upper(),
                file=log_data.get("file") or DEFAULT_LOG_FILE,
            ),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        """Build configuration from the process environment."""
        env = os.environ if environ is None else environ

        return cls.from_dict({
            "telegram": {
                "bot_token": env.get("TELEGRAM_BOT_TOKEN"),
                "source": env.get("TELEGRAM_SOURCE"),
            },
            "whatsapp": {
                "group_id": env.get("WA_GROUP_ID"),
                "group_name": env.get("WA_GROUP_NAME") or env.get("WHATSAPP_GROUP_NAME"),
                "auth_dir": env.get("AUTH_DIR"),
                "bridge_http_url": env.get("WA_BRIDGE_URL", "http://localhost:3001"),
                "bridge_ws_url": env.get("WA_BRIDGE_WS_URL", "ws://localhost:3001/ws"),
            },
            "gist": {
                "token": env.get("GITHUB_TOKEN"),
                "gist_id": env.get("GIST_ID"),
            },
            "web": {
                "port": env.get("PORT"),
                "admin_token": env.get("ADMIN_TOKEN"),
            },
            "logging": {
                "level": env.get("LOG_LEVEL"),
                "file": env.get("LOG_FILE"),
            },
        })

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (secrets included)"""
        return {
            "telegram": {
                "bot_token": self.telegram.bot_token,
                "source": self.telegram.source,
                "api_url": self.telegram.api_url,
            },
            "whatsapp": {
                "group_id": self.whatsapp.group_id,
                "group_name": self.whatsapp.group_name,
                "auth_dir": self.whatsapp.auth_dir,
                "bridge_http_url": self.whatsapp.bridge_http_url,
                "bridge_ws_url": self.whatsapp.bridge_ws_url,
                "restart_base_delay": self.whatsapp.restart_base_delay,
                "restart_max_delay": self.whatsapp.restart_max_delay,
            },
            "gist": {
                "token": self.gist.token,
                "gist_id": self.gist.gist_id,
                "api_url": self.gist.api_url,
                "debounce_seconds": self.gist.debounce_seconds,
            },
            "web": {
                "host": self.web.host,
                "port": self.web.port,
                "admin_token": self.web.admin_token,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
            },
        }


def _opt_str(value: Any) -> Optional[str]:
    # YAML turns bare numeric group ids into ints
    if value is None or value == "":
        return None
    return str(value)
