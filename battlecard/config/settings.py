"""Paper-trading settings read by the engine and written by the settings UI."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Any

from battlecard.config.config_manager import ConfigManager
from battlecard.config.toggle_registry import ToggleRegistry
from battlecard.core.errors import InvalidSettings

logger = logging.getLogger(__name__)

_BOOL_FIELDS = ("enabled", "auto_execute_on_trigger", "auto_exit_on_target", "auto_exit_on_stop", "sound_alerts")


@dataclass(frozen=True)
class EngineSettings:
    enabled: bool = True
    auto_execute_on_trigger: bool = True
    auto_exit_on_target: bool = True
    auto_exit_on_stop: bool = True
    sound_alerts: bool = True
    default_position_size: float = 100.0
    leverage: float = 10.0
    starting_balance: float = 10_000.0

    def __post_init__(self) -> None:
        for name in _BOOL_FIELDS:
            if not isinstance(getattr(self, name), bool):
                raise InvalidSettings(f"{name} must be a bool, got {getattr(self, name)!r}")
        if self.leverage < 1:
            raise InvalidSettings(f"leverage must be >= 1, got {self.leverage}")
        if self.default_position_size <= 0:
            raise InvalidSettings(f"default_position_size must be > 0, got {self.default_position_size}")
        if self.starting_balance < 0:
            raise InvalidSettings(f"starting_balance must be >= 0, got {self.starting_balance}")

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Config-style lookup so the toggle registry can resolve against live settings."""
        section, _, name = dotted_key.partition(".")
        if section != "paper_trading":
            return default
        return getattr(self, name, default)

    def is_enabled(self, toggle_id: str) -> bool:
        """Effective toggle state: children are OFF whenever ``enabled`` is OFF."""
        return ToggleRegistry(self.get).is_enabled(toggle_id)

    def with_updates(self, **changes: Any) -> EngineSettings:
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise InvalidSettings(f"Unknown settings: {', '.join(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_config(cls, config: ConfigManager) -> EngineSettings:
        defaults = cls()
        return cls(**{
            f.name: config.get(f"paper_trading.{f.name}", getattr(defaults, f.name))
            for f in fields(cls)
        })


class SettingsStore:
    """Holds the current settings; updates swap in a new frozen value atomically."""

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self._settings = settings or EngineSettings()
        self._lock = threading.Lock()

    @property
    def current(self) -> EngineSettings:
        return self._settings

    def update(self, **changes: Any) -> EngineSettings:
        with self._lock:
            self._settings = self._settings.with_updates(**changes)
            logger.info("Settings updated: %s", ", ".join(f"{k}={v}" for k, v in changes.items()))
            return self._settings

    def replace_all(self, settings: EngineSettings) -> None:
        with self._lock:
            self._settings = settings
