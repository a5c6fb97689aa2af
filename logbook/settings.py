"""
Settings - Application configuration backed by the local meta table.

Usage:
    settings = Settings(db)
    attempts = await settings.get('retry_max_attempts')
    await settings.set('pull_incremental', True)
    all_settings = await settings.all()

Defaults apply until a value is stored. Remote credentials come from the
environment so they never need to be written to disk.
"""

import os
from typing import Any

from logbook.database import Database
from logbook.resilience import RetryPolicy

SETTINGS_PREFIX = "setting:"

# Default settings - applied on first run, then overridable per device
DEFAULTS = {
    # Remote store
    "remote_url": os.getenv("LOGBOOK_REMOTE_URL", ""),
    "remote_api_key": os.getenv("LOGBOOK_REMOTE_KEY", ""),
    "remote_timeout_seconds": 15.0,
    # Retry-with-backoff for every remote call
    "retry_max_attempts": 3,
    "retry_base_delay": 0.5,
    "retry_max_delay": 8.0,
    # Connectivity heartbeat (seconds between reachability pings)
    "connectivity_ping_interval": 30.0,
    # Pull only rows changed since the watermark (no pruning in this mode)
    "pull_incremental": False,
}

# Environment-sourced keys, never persisted by init_defaults
ENV_KEYS = {"remote_url", "remote_api_key"}


class Settings:
    """Application settings stored in the meta registry."""

    _db: "Database"

    def __init__(self, db: Database):
        self._db = db

    async def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value."""
        value = await self._db.get_meta(SETTINGS_PREFIX + key)
        if value is None:
            return default if default is not None else DEFAULTS.get(key)
        return value

    async def set(self, key: str, value: Any) -> None:
        """Set a setting value."""
        await self._db.set_meta(SETTINGS_PREFIX + key, value)

    async def all(self) -> dict:
        """Get all settings with defaults applied."""
        stored = await self._db.get_all_meta(prefix=SETTINGS_PREFIX)
        result = DEFAULTS.copy()
        result.update({k[len(SETTINGS_PREFIX) :]: v for k, v in stored.items()})
        return result

    async def init_defaults(self) -> None:
        """Initialize default settings if not already set."""
        for key, value in DEFAULTS.items():
            if key in ENV_KEYS:
                continue
            existing = await self._db.get_meta(SETTINGS_PREFIX + key)
            if existing is None:
                await self._db.set_meta(SETTINGS_PREFIX + key, value)

    async def retry_policy(self) -> RetryPolicy:
        """Build the retry policy from the configured attempts and delays."""
        return RetryPolicy(
            max_attempts=int(await self.get("retry_max_attempts")),
            base_delay=float(await self.get("retry_base_delay")),
            max_delay=float(await self.get("retry_max_delay")),
        )
