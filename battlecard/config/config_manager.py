"""ConfigManager — layered TOML config: packaged base, named profile, then environment.

Environment overrides use ``BATTLECARD__<SECTION>__<KEY>`` (double underscore
between levels), e.g. ``BATTLECARD__PAPER_TRADING__LEVERAGE=5``. Values are
parsed as TOML literals, so ``true``, ``2.5`` and ``["a", "b"]`` keep their
types; anything else is taken as a plain string.
"""

from __future__ import annotations

import copy
import logging
import os
import sys
from pathlib import Path
from typing import Any, Mapping

from battlecard.config.toggle_registry import ToggleRegistry

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "battlecard_base.toml"
ENV_PREFIX = "BATTLECARD__"

_MISSING = object()


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base (last wins). Returns new dict."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _parse_env_value(raw: str) -> Any:
    try:
        return tomllib.loads(f"value = {raw}")["value"]
    except tomllib.TOMLDecodeError:
        return raw


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Nested config dict from ``BATTLECARD__SECTION__KEY`` variables."""
    overrides: dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in name[len(ENV_PREFIX):].split("__") if part]
        if not path:
            continue
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = _parse_env_value(raw)
    return overrides


class ConfigManager:
    """Singleton config manager.

    Merge order (last wins): base → profile → environment
    """

    _instance: ConfigManager | None = None

    def __new__(cls) -> ConfigManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._config: dict[str, Any] = {}
        self._base_path: Path | None = None
        self._profile: str | None = None
        self._environ: Mapping[str, str] | None = None
        self._toggle_registry: ToggleRegistry | None = None
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Reset singleton (for testing)."""
        cls._instance = None

    def load(
        self,
        base_path: str | Path = DEFAULT_CONFIG_PATH,
        profile: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Load and merge config layers.

        Args:
            base_path: Path to battlecard_base.toml
            profile: Profile name (e.g. 'manual'), read from profiles/profile_{name}.toml
            environ: Source of BATTLECARD__* overrides; defaults to os.environ
        """
        self._base_path = Path(base_path)
        self._profile = profile
        self._environ = environ

        config = self._load_toml(self._base_path)
        if profile:
            profile_path = self._base_path.parent / "profiles" / f"profile_{profile}.toml"
            if not profile_path.exists():
                raise FileNotFoundError(f"Unknown config profile '{profile}': {profile_path}")
            config = _deep_merge(config, self._load_toml(profile_path))

        overrides = env_overrides(os.environ if environ is None else environ)
        if overrides:
            config = _deep_merge(config, overrides)

        self._install(config)
        logger.info(
            "Config loaded: %s (profile=%s, %d env sections)",
            self._base_path.name,
            profile or "none",
            len(overrides),
        )

    def load_dict(self, config: dict[str, Any]) -> None:
        """Load from an in-memory dict layered over the packaged base file."""
        self._base_path = None
        self._profile = None
        self._environ = None
        self._install(_deep_merge(self._load_toml(DEFAULT_CONFIG_PATH), config))

    def _install(self, config: dict[str, Any]) -> None:
        self._config = config
        self._toggle_registry = ToggleRegistry(self.get)

    def _load_toml(self, path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return tomllib.load(f)

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Get config value using dot notation. E.g. get('trigger.at_trigger_pct')."""
        node: Any = self._config
        for part in dotted_key.split("."):
            node = node.get(part, _MISSING) if isinstance(node, dict) else _MISSING
            if node is _MISSING:
                return default
        return node

    def set(self, dotted_key: str, value: Any) -> None:
        *parents, leaf = dotted_key.split(".")
        node = self._config
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value

    def is_toggle_enabled(self, toggle_id: str) -> bool:
        """Check if a toggle is enabled, respecting the dependency chain."""
        if self._toggle_registry is None:
            raise RuntimeError("ConfigManager not loaded. Call load() first.")
        return self._toggle_registry.is_enabled(toggle_id)

    def validate_toggles(self) -> list[str]:
        if self._toggle_registry is None:
            raise RuntimeError("ConfigManager not loaded. Call load() first.")
        return self._toggle_registry.validate()

    def validate(self) -> list[str]:
        """Toggle errors plus engine thresholds that would make triggers misbehave."""
        errors = self.validate_toggles()

        at_trigger = self.get("trigger.at_trigger_pct")
        approaching = self.get("trigger.approaching_pct")
        if not (isinstance(at_trigger, (int, float)) and isinstance(approaching, (int, float))):
            errors.append("trigger.at_trigger_pct and trigger.approaching_pct must be numbers")
        elif not 0 < at_trigger < approaching:
            errors.append(
                f"trigger bands must satisfy 0 < at_trigger_pct ({at_trigger}) "
                f"< approaching_pct ({approaching})"
            )

        for key in ("trigger.chaos_band_pct", "trigger.approach_alert_pct"):
            value = self.get(key)
            if not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"{key} must be a positive number, got {value!r}")

        workers = self.get("engine.max_workers", 1)
        if not isinstance(workers, int) or workers < 1:
            errors.append(f"engine.max_workers must be an integer >= 1, got {workers!r}")

        return errors

    def reload(self) -> None:
        """Re-read the config files (and environment) from scratch."""
        if self._base_path is not None:
            self.load(self._base_path, self._profile, self._environ)

    @property
    def raw(self) -> dict[str, Any]:
        """Access the raw merged config dict."""
        return self._config
