"""Skiff runtime configuration and settings."""
import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class SkiffConfig:
    """Runtime configuration for Skiff operations.

    Attributes:
        manifest_name: Project manifest filename (default: skiff.yaml)
        default_env: Environment created by init when none is requested (default: dev)
        dev_poll_interval: Seconds between file polls in dev mode (default: 1.0)
        dev_queue_size: Capacity of the dev mode change queue (default: 50)
        lock_timeout: Seconds to wait for the project lock (default: 0)
        working_dir: Project directory used by the CLI (default: current directory)
    """

    manifest_name: str = "skiff.yaml"
    default_env: str = "dev"

    # Dev loop
    dev_poll_interval: float = 1.0
    dev_queue_size: int = 50

    # Concurrency guard
    lock_timeout: int = 0  # fail immediately when another run holds the lock

    working_dir: str = "."

    @classmethod
    def from_env(cls) -> "SkiffConfig":
        """Create config from environment variables.

        Environment variables:
            SKIFF_MANIFEST: Manifest filename
            SKIFF_DEFAULT_ENV: Default environment name
            SKIFF_DEV_POLL_INTERVAL: Dev mode poll interval in seconds
            SKIFF_DEV_QUEUE_SIZE: Dev mode change queue size
            SKIFF_LOCK_TIMEOUT: Project lock timeout in seconds
            SKIFF_CONFIG_DIR: Project working directory

        Returns:
            SkiffConfig instance with values from environment or defaults
        """
        return cls(
            manifest_name=os.getenv("SKIFF_MANIFEST", cls.manifest_name),
            default_env=os.getenv("SKIFF_DEFAULT_ENV", cls.default_env),
            dev_poll_interval=float(
                os.getenv("SKIFF_DEV_POLL_INTERVAL", cls.dev_poll_interval)
            ),
            dev_queue_size=int(os.getenv("SKIFF_DEV_QUEUE_SIZE", cls.dev_queue_size)),
            lock_timeout=int(os.getenv("SKIFF_LOCK_TIMEOUT", cls.lock_timeout)),
            working_dir=os.getenv("SKIFF_CONFIG_DIR", cls.working_dir),
        )


# Global config instance (can be overridden)
_config: Optional[SkiffConfig] = None


def get_config() -> SkiffConfig:
    """Get the global Skiff configuration.

    Returns:
        SkiffConfig instance (creates from environment if not set)
    """
    global _config
    if _config is None:
        _config = SkiffConfig.from_env()
    return _config


def set_config(config: Optional[SkiffConfig]):
    """Set the global Skiff configuration.

    Args:
        config: SkiffConfig instance to use globally, or None to re-read the environment
    """
    global _config
    _config = config
