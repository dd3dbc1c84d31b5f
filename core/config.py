"""Application configuration for ServerWrecker.

Central configuration module powered by Pydantic v2.  Settings are loaded from
environment variables (with ``.env`` file support) and an optional
``config/wrecker_config.json`` file.

Key exports:
    WreckerSettings: Root settings model (instantiate once per process).
    SwarmOptions: Per-run options consumed by ``SwarmOrchestrator.start``.
    GameVersion / ServiceServer / ProxyType: Enumerations shared by the
        orchestrator, the authenticator and the bot registry.
    BASE_DIR / CONFIG_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, TypeAdapter
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing runtime configuration files (accounts, proxies)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

logger: logging.Logger = logging.getLogger(__name__)


class GameVersion(Enum):
    """Protocol versions a bot can be built for.

    The value is the human-readable release name used on the command line.
    """

    V1_8 = "1.8"
    V1_9 = "1.9"
    V1_10 = "1.10"
    V1_11 = "1.11"
    V1_12 = "1.12"
    V1_13 = "1.13"
    V1_14 = "1.14"
    V1_15 = "1.15"
    V1_16 = "1.16"
    V1_17 = "1.17"

    @classmethod
    def from_string(cls, value: str) -> "GameVersion":
        """Look up a version by its release name (``"1.17"``) or member name."""
        for member in cls:
            if value in (member.value, member.name):
                return member
        raise ValueError(f"Unknown game version: {value}")


class ServiceServer(Enum):
    """Identity-provider endpoints.

    Members:
        MOJANG: The official authentication servers.
        THE_ALTENING: Alt-account provider speaking the same protocol.
    """

    MOJANG = "mojang"
    THE_ALTENING = "thealtening"

    @property
    def auth_url(self) -> str:
        """Base URL of the authentication endpoint (trailing slash kept)."""
        return _AUTH_URLS[self]


_AUTH_URLS: Dict[ServiceServer, str] = {
    ServiceServer.MOJANG: "https://authserver.mojang.com/",
    ServiceServer.THE_ALTENING: "http://authserver.thealtening.com/",
}


class ProxyType(Enum):
    """Proxy transport kinds supported by the tunnel layer."""

    HTTP = "http"
    SOCKS4 = "socks4"
    SOCKS5 = "socks5"


class SwarmOptions(BaseModel):
    """Options for a single swarm run.

    Attributes:
        host: Target server hostname.
        port: Target server port.
        amount: Number of bots requested.
        join_delay_ms: Stagger delay inserted before every connect.
        name_format: Username template for generated accounts
            (``"Bot%d"`` or ``"Bot{}"``).
        game_version: Protocol version to build bots for.
        accounts_per_proxy: Per-proxy capacity; ``0`` disables the cap.
        proxy_type: Transport kind used for every configured proxy.
        service_server: Identity provider override for this run. ``None``
            keeps the orchestrator's current selection.
        connect_timeout: Seconds a single connect (including the proxy
            handshake) may take before the bot is marked failed.
        debug: Enable DEBUG logging for this run.
    """

    host: str = "127.0.0.1"
    port: int = Field(default=25565, ge=1, le=65535)
    amount: int = Field(default=1, ge=0)
    join_delay_ms: int = Field(default=1000, ge=0)
    name_format: str = "Bot%d"
    game_version: GameVersion = GameVersion.V1_17
    accounts_per_proxy: int = Field(default=0, ge=0)
    proxy_type: ProxyType = ProxyType.SOCKS5
    service_server: Optional[ServiceServer] = None
    connect_timeout: float = Field(default=30.0, gt=0)
    debug: bool = False


class WreckerSettings(BaseSettings):
    """Root configuration model for ServerWrecker.

    All fields can be set via ``WRECKER_``-prefixed environment variables
    or a ``.env`` file.  The model also merges values from
    ``config/wrecker_config.json`` during post-init.

    Section overview:
        * **Core** -- log level and log file.
        * **Inputs** -- account list and proxy list files.
        * **Identity** -- which service server to authenticate against.
        * **Swarm defaults** -- fallback values for every
          :class:`SwarmOptions` field.
    """

    model_config = SettingsConfigDict(
        env_prefix="WRECKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    log_level: str = "INFO"
    log_file: str = str(LOGS_DIR / "serverwrecker.log")

    # Inputs (one entry per line)
    accounts_file: Optional[str] = None
    proxies_file: Optional[str] = None

    # Identity
    service_server: ServiceServer = ServiceServer.MOJANG

    # Swarm defaults
    host: str = "127.0.0.1"
    port: int = 25565
    amount: int = 1
    join_delay_ms: int = 1000
    name_format: str = "Bot%d"
    game_version: GameVersion = GameVersion.V1_17
    accounts_per_proxy: int = 0
    proxy_type: ProxyType = ProxyType.SOCKS5
    connect_timeout: float = 30.0

    def model_post_init(self, __context: Any) -> None:
        """Merge ``config/wrecker_config.json`` into the settings."""
        self._load_config_file_defaults()

    def _load_config_file_defaults(self) -> None:
        """Load swarm defaults from the JSON config file.

        Keys in the file override the model defaults, but values that were
        supplied through the environment win.  Unknown keys and values that
        fail validation are skipped with a debug log line.
        """
        config_path: Path = CONFIG_DIR / "wrecker_config.json"
        if not config_path.exists():
            return

        try:
            data: Dict[str, Any] = json.loads(
                config_path.read_text(encoding="utf-8")
            )
        except Exception as exc:
            logger.warning(
                "Failed to load wrecker_config.json: %s", exc
            )
            return

        if not isinstance(data, dict):
            return

        for key, value in data.items():
            if key not in type(self).model_fields:
                logger.debug("Ignoring unknown config key: %s", key)
                continue
            if key in self.model_fields_set:
                continue
            try:
                field = type(self).model_fields[key]
                setattr(
                    self,
                    key,
                    TypeAdapter(field.annotation).validate_python(value),
                )
            except Exception as exc:
                logger.debug(
                    "Skipping invalid config value for %s: %s",
                    key,
                    exc,
                )

    def to_options(self, **overrides: Any) -> SwarmOptions:
        """Build :class:`SwarmOptions` from these settings.

        Args:
            **overrides: Field values that replace the configured
                defaults.  ``None`` values are ignored so CLI flags that
                were not given fall through.

        Returns:
            A validated options object.
        """
        values: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "amount": self.amount,
            "join_delay_ms": self.join_delay_ms,
            "name_format": self.name_format,
            "game_version": self.game_version,
            "accounts_per_proxy": self.accounts_per_proxy,
            "proxy_type": self.proxy_type,
            "service_server": self.service_server,
            "connect_timeout": self.connect_timeout,
            "debug": self.log_level.upper() == "DEBUG",
        }
        values.update(
            {k: v for k, v in overrides.items() if v is not None}
        )
        return SwarmOptions(**values)
