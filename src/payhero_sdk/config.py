"""Process-wide configuration for the PayHero gateway."""

import os
import logging
from dataclasses import dataclass
from typing import Optional, Mapping

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://backend.payhero.co.ke/api/v2"
DEFAULT_PROVIDER = "m-pesa"
DEFAULT_USD_KES_RATE = 129
DEFAULT_POLL_GRACE_SECONDS = 120


class ConfigurationError(ValueError):
    """Raised when the gateway cannot be configured from its inputs."""


@dataclass(frozen=True)
class PayHeroConfig:
    """Credentials and tunables for talking to PayHero.

    Constructed once at startup and handed to the connector. A config with
    missing credentials or channel id cannot be created.
    """
    username: str
    password: str
    channel_id: int
    provider: str = DEFAULT_PROVIDER
    base_url: str = DEFAULT_BASE_URL
    callback_url: Optional[str] = None
    timeout_seconds: float = 30.0
    usd_kes_rate: float = DEFAULT_USD_KES_RATE
    poll_grace_seconds: int = DEFAULT_POLL_GRACE_SECONDS

    def __post_init__(self):
        if not self.username:
            raise ConfigurationError("PayHero username not provided (PAYHERO_USERNAME)")
        if not self.password:
            raise ConfigurationError("PayHero password not provided (PAYHERO_PASSWORD)")
        if not self.channel_id:
            raise ConfigurationError("PayHero channel ID not provided (PAYHERO_CHANNEL_ID)")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive")
        if self.usd_kes_rate <= 0:
            raise ConfigurationError("usd_kes_rate must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PayHeroConfig":
        """Build the configuration from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            A validated PayHeroConfig.

        Raises:
            ConfigurationError: If a required variable is missing or malformed.
        """
        env = os.environ if environ is None else environ

        raw_channel = env.get("PAYHERO_CHANNEL_ID", "").strip()
        if not raw_channel:
            raise ConfigurationError("PayHero channel ID not provided (PAYHERO_CHANNEL_ID)")
        try:
            channel_id = int(raw_channel)
        except ValueError as e:
            raise ConfigurationError(
                f"PAYHERO_CHANNEL_ID must be an integer, got {raw_channel!r}"
            ) from e

        try:
            timeout_seconds = float(env.get("PAYHERO_TIMEOUT_SECONDS", "30"))
            usd_kes_rate = float(env.get("USD_KES_RATE", str(DEFAULT_USD_KES_RATE)))
            poll_grace_seconds = int(env.get("POLL_GRACE_SECONDS", str(DEFAULT_POLL_GRACE_SECONDS)))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        config = cls(
            username=env.get("PAYHERO_USERNAME", ""),
            password=env.get("PAYHERO_PASSWORD", ""),
            channel_id=channel_id,
            provider=env.get("PAYHERO_PROVIDER") or DEFAULT_PROVIDER,
            base_url=(env.get("PAYHERO_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            callback_url=env.get("PAYHERO_CALLBACK_URL") or None,
            timeout_seconds=timeout_seconds,
            usd_kes_rate=usd_kes_rate,
            poll_grace_seconds=poll_grace_seconds,
        )
        logger.info(
            f"Loaded PayHero configuration for channel {config.channel_id} "
            f"({config.provider}) at {config.base_url}"
        )
        return config
