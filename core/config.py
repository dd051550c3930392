"""Application configuration for the chat claim bot.

Central configuration module powered by Pydantic v2.  Settings are loaded from
environment variables (with ``.env`` file support) and an optional
``config/claim_config.json`` file.

Key exports:
    BotSettings: Root settings model (singleton-like; instantiate once).
    GameProfile: Per-game channel, enable flag and purchase policy.
    BASE_DIR / CONFIG_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationError
from core.scheduler import PurchaseRule
from core.utils import normalize_channel, normalize_name

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing runtime configuration files."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

CONFIG_FILE_NAME = "claim_config.json"

logger: logging.Logger = logging.getLogger(__name__)


class GameProfile(BaseModel):
    """One bot instance: a game played in one channel.

    Attributes:
        game: Game identifier matching a key in ``GAME_REGISTRY``.
        channel: Channel the counterpart bot sits in (without ``#``).
        enabled: Set to ``False`` to skip this profile at startup.
        purchases: Follow-up purchase rules; ``None`` uses the game's
            defaults, an empty list disables purchases.
        claim_interval_seconds: Override of the game's claim interval.
    """

    game: str
    channel: str
    enabled: bool = True
    purchases: Optional[List[PurchaseRule]] = None
    claim_interval_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator("channel")
    @classmethod
    def _normalize_channel(cls, value: str) -> str:
        value = normalize_channel(value)
        if not value:
            raise ValueError("channel must not be empty")
        return value


class BotSettings(BaseSettings):
    """Root configuration model for the claim bot.

    All fields can be set via environment variables or a ``.env`` file.
    The model also merges game profiles from ``config/claim_config.json``
    during post-init.

    Section overview:
        * **Core** -- log level.
        * **Identity** -- chat login and OAuth token.
        * **Chat** -- chat server endpoint for the bundled transport.
        * **Communication** -- reply wait budget and retry count.
        * **Scheduling** -- oracle retry delay, absent-counterpart
          suspension, request-error policy, presence check.
        * **HTTP** -- oracle/chatters timeout, TLS policy, headers.
        * **Games** -- per-game profiles.
        * **Legacy** -- single-channel fields for backward compat.
    """

    # Core
    log_level: str = "INFO"

    # Identity
    twitch_username: str = ""
    twitch_token: SecretStr = SecretStr("")

    # Chat
    chat_host: str = "irc.chat.twitch.tv"
    chat_port: int = 6697

    # Communication
    reply_timeout_seconds: float = Field(default=5.0, gt=0)
    max_retries: int = Field(default=3, ge=0)

    # Scheduling
    oracle_retry_delay_seconds: float = Field(default=10.0, ge=0)
    absent_suspend_seconds: float = Field(default=1800.0, ge=0)  # 30 minutes
    request_error_delay_seconds: float = Field(default=300.0, ge=0)
    stop_on_request_error: bool = False
    check_presence: bool = False  # legacy chatters endpoint, see ChattersClient

    # HTTP
    http_timeout_seconds: float = Field(default=10.0, gt=0)
    accept_invalid_certs: bool = False
    user_agent: Optional[str] = None
    project_repository: Optional[str] = None

    # Games
    games: List[GameProfile] = Field(default_factory=list)

    # Legacy single-channel configuration
    channel: Optional[str] = None
    enabled_games: List[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @field_validator("twitch_username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("twitch_token", mode="before")
    @classmethod
    def _strip_oauth_prefix(cls, value: Any) -> Any:
        # Tokens are commonly pasted as "oauth:xxxx"
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        if isinstance(value, str):
            value = value.strip()
            if value.lower().startswith("oauth:"):
                value = value[len("oauth:"):]
        return value

    def model_post_init(self, __context: Any) -> None:
        """Merge game profiles after Pydantic model construction.

        * Loads supplementary profiles from ``config/claim_config.json``.
        * Falls back to the legacy ``channel`` + ``enabled_games`` fields
          when no profile was configured at all.
        """
        self._load_claim_config_defaults()

        if not self.games and self.channel and self.enabled_games:
            for game in self.enabled_games:
                self.games.append(GameProfile(game=game, channel=self.channel))

    def _load_claim_config_defaults(self) -> None:
        """Load game profiles from the config file.

        Reads ``config/claim_config.json`` and merges its ``"games"``
        mapping into the current settings instance.  Profiles already
        present (matched by normalised game name + channel) are *not*
        overwritten.
        """
        config_path: Path = CONFIG_DIR / CONFIG_FILE_NAME
        if not config_path.exists():
            return

        try:
            data: Dict[str, Any] = json.loads(
                config_path.read_text(encoding="utf-8")
            )
        except (OSError, ValueError) as exc:
            logger.warning(
                "Failed to load %s: %s", CONFIG_FILE_NAME, exc
            )
            return

        games_data = data.get("games", {}) if isinstance(data, dict) else {}
        if not isinstance(games_data, dict):
            logger.warning("Ignoring 'games' in %s: expected a mapping", CONFIG_FILE_NAME)
            return

        existing_keys = {
            (normalize_name(profile.game), profile.channel)
            for profile in self.games
        }
        for game, info in games_data.items():
            if not isinstance(info, dict):
                continue
            channel = info.get("channel") or self.channel
            if not channel:
                logger.warning("No channel configured for game '%s' in %s", game, CONFIG_FILE_NAME)
                continue
            key = (normalize_name(game), normalize_channel(channel))
            if key in existing_keys:
                continue
            try:
                self.games.append(
                    GameProfile(
                        game=game,
                        channel=channel,
                        enabled=info.get("enabled", True),
                        purchases=info.get("purchases"),
                        claim_interval_seconds=info.get("claim_interval_seconds"),
                    )
                )
            except ValueError as exc:
                logger.warning("Invalid profile for game '%s': %s", game, exc)
                continue
            existing_keys.add(key)

    def validate_credentials(self) -> None:
        """Check the chat identity before any bot instance starts.

        Raises:
            ConfigurationError: If the username or token is missing or
                malformed.
        """
        if not self.twitch_username:
            raise ConfigurationError("TWITCH_USERNAME is not set")
        if not self.twitch_username.replace("_", "").isalnum():
            raise ConfigurationError(
                f"TWITCH_USERNAME {self.twitch_username!r} is not a valid login name"
            )
        token = self.twitch_token.get_secret_value()
        if not token:
            raise ConfigurationError("TWITCH_TOKEN is not set")
        if any(ch.isspace() for ch in token) or not token.isascii():
            raise ConfigurationError("TWITCH_TOKEN is malformed")

    def enabled_profiles(self, game: Optional[str] = None) -> List[GameProfile]:
        """Return enabled profiles, optionally only those of *game*.

        Args:
            game: Game name filter (case-insensitive, ``_`` ignored).

        Returns:
            Enabled profiles in configuration order.
        """
        profiles = [profile for profile in self.games if profile.enabled]
        if game:
            target = normalize_name(game)
            profiles = [p for p in profiles if normalize_name(p.game) == target]
        return profiles
