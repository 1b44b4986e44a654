from __future__ import annotations

import asyncio
import logging
import os
import tomllib
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Set

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from matui.errors import ConfigError
from matui.notices import ConfigRejected, ConfigReloaded

logger = logging.getLogger("matui.config")

_config_dir_env = os.getenv("MATUI_CONFIG_DIR", "")
APP_DIR = Path(_config_dir_env).expanduser() if _config_dir_env else Path.home() / ".config" / "matui"
CONFIG_FILE = APP_DIR / "config.toml"
LOG_FILE = APP_DIR / "matui.log"
STORE_DIR = APP_DIR / "store"        # matrix-nio session + crypto store
KEYS_FILE = APP_DIR / "room-keys.txt"  # E2E key export unlocked by the recovery passphrase

DEFAULT_MAX_EVENTS = 8_192
DEFAULT_PAGE_SIZE = 10
CHANNEL_MAXSIZE = 1_024          # notifications queued before producers wait
DRAIN_INTERVAL_S = 0.05
CONFIG_POLL_INTERVAL_S = 2.0
SYNC_TIMEOUT_MS = 30_000

DEFAULT_FILE_PICKER = "fzf --multi"
DEFAULT_REACTIONS = ["❤️", "👍", "👎", "😂", "‼️", "❓️"]
DEFAULT_CONFIG = 'reactions = [ "❤️", "👍", "👎", "😂", "‼️", "❓️"]\n'


class Settings(BaseModel):
    """The hot-reloadable part of the configuration."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    reactions: List[str] = Field(default_factory=lambda: list(DEFAULT_REACTIONS))
    muted: Set[str] = Field(default_factory=set)
    clear_vim: bool = Field(default=False, validation_alias=AliasChoices("clear_vim", "clean_vim"))
    blur_delay: int = Field(default=0, ge=0)  # seconds; 0 disables the inactivity timer
    max_events: int = DEFAULT_MAX_EVENTS     # negative = unlimited
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    search_depth: int = -1                   # messages scanned per query; negative = whole cache
    search_newest_first: bool = True
    search_regex: bool = False
    file_picker: str = DEFAULT_FILE_PICKER  # prints the chosen paths on stdout

    @field_validator("reactions")
    @classmethod
    def dedupe_reactions(cls, value: List[str]) -> List[str]:
        out: List[str] = []
        for r in value:
            r = r.strip()
            if r and r not in out:
                out.append(r)
        if not out:
            raise ValueError("reaction palette is empty")
        return out


def ensure_config(path: Path = CONFIG_FILE) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG, encoding="utf-8")


def load_settings(path: Path = CONFIG_FILE) -> Settings:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path.name}: {e}") from e
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"{path.name}: {errors}") from e


class ConfigWatcher:
    """Polls the settings file and publishes reload results into the UI channel."""

    def __init__(
        self,
        publish: Callable[[object], Awaitable[None]],
        path: Path = CONFIG_FILE,
        interval: float = CONFIG_POLL_INTERVAL_S,
    ) -> None:
        self.path = path
        self.interval = interval
        self._publish = publish
        self._stop_event = asyncio.Event()
        self._mtime = self._stat()

    def _stat(self) -> Optional[int]:
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    async def check(self) -> bool:
        """Reload if the file changed since the last look. Returns True on a reload attempt."""
        mtime = self._stat()
        if mtime == self._mtime:
            return False
        self._mtime = mtime
        try:
            settings = load_settings(self.path)
        except ConfigError as e:
            logger.warning("keeping previous configuration: %s", e)
            await self._publish(ConfigRejected(str(e)))
        else:
            logger.info("%s written; refreshing configuration", self.path.name)
            await self._publish(ConfigReloaded(settings))
        return True

    async def run(self) -> None:
        while not self._stop_event.is_set():
            await self.check()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stop_event.set()
