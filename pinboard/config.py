# Pinboard — configuration
# Override limits, paths and host settings via pinboard.yaml or env vars.

import logging
import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import List, Optional

from .clock import STALE_THRESHOLD_DAYS, AUTO_UNPIN_THRESHOLD_DAYS

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "pinboard.yaml"

MAX_PINS = 7


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class PinConfig:
    """Runtime configuration for the pin store and its hosts."""

    # Policy
    max_pins: int = MAX_PINS
    stale_threshold_days: int = STALE_THRESHOLD_DAYS
    auto_unpin_threshold_days: int = AUTO_UNPIN_THRESHOLD_DAYS

    # Storage
    db_path: str = "~/.local/share/pinboard/pins.db"

    # HTTP host
    api_key_env: str = "PINBOARD_API_SECRET"

    # Telegram host
    telegram_token_env: str = "PINBOARD_BOT_TOKEN"
    allowed_users: List[str] = field(default_factory=list)

    log_level: str = "INFO"

    def resolve_paths(self):
        """Apply env overrides and expand ~."""
        env_db = os.environ.get("PINBOARD_DB")
        if env_db:
            self.db_path = env_db
        self.db_path = str(Path(self.db_path).expanduser())
        self.allowed_users = [str(uid) for uid in self.allowed_users]

    def validate(self) -> "PinConfig":
        for name in ("max_pins", "stale_threshold_days", "auto_unpin_threshold_days"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if self.auto_unpin_threshold_days < self.stale_threshold_days:
            logger.warning(
                f"auto_unpin_threshold_days ({self.auto_unpin_threshold_days}) is below "
                f"stale_threshold_days ({self.stale_threshold_days}); pins will be "
                f"evicted before they are ever shown as stale"
            )
        return self

    @property
    def api_key(self) -> str:
        return os.environ.get(self.api_key_env, "")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "PinConfig":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        known = {f.name for f in fields(cls)}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (OSError, yaml.YAMLError, AttributeError, TypeError) as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        return cfg.validate()
