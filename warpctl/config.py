"""Application configuration."""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _default_app_dir() -> Path:
    return Path.home() / ".warpctl"


@dataclass
class AppConfig:
    """Paths and tunables shared by the controller, key store and logging."""

    app_dir: Path = field(default_factory=_default_app_dir)
    warp_cli: str = "warp-cli"
    command_timeout: float = 5.0
    connect_attempts: int = 6
    retry_delay: float = 2.0

    @property
    def log_file(self) -> Path:
        return self.app_dir / "warpctl.log"

    @property
    def db_file(self) -> Path:
        return self.app_dir / "warpctl.db"

    def ensure_dirs(self) -> None:
        self.app_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls, env_file: Path | None = None) -> "AppConfig":
        """Build the configuration from the environment.

        Loads a .env file from the working directory (or ``env_file``)
        if present, then reads WARPCTL_HOME, WARP_CLI, WARPCTL_TIMEOUT,
        WARPCTL_CONNECT_ATTEMPTS and WARPCTL_RETRY_DELAY.

        Raises:
            ConfigError: If a numeric setting is malformed
        """
        env_path = env_file or Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)

        config = cls()
        home = os.getenv("WARPCTL_HOME")
        if home:
            config.app_dir = Path(home).expanduser()
        config.warp_cli = os.getenv("WARP_CLI") or config.warp_cli
        config.command_timeout = _number("WARPCTL_TIMEOUT", float, config.command_timeout)
        config.connect_attempts = _number("WARPCTL_CONNECT_ATTEMPTS", int, config.connect_attempts)
        config.retry_delay = _number("WARPCTL_RETRY_DELAY", float, config.retry_delay)

        if config.command_timeout <= 0:
            raise ConfigError("WARPCTL_TIMEOUT must be greater than zero")
        if config.connect_attempts < 1:
            raise ConfigError("WARPCTL_CONNECT_ATTEMPTS must be at least 1")
        if config.retry_delay < 0:
            raise ConfigError("WARPCTL_RETRY_DELAY cannot be negative")

        return config


class ConfigError(Exception):
    """Error loading configuration."""

    pass


def _number(name, convert, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = convert(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{name} must be a finite number, got {raw!r}")
    return value
