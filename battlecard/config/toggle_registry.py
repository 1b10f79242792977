"""Toggle dependency tree for paper-trading feature switches.

    ENABLED → AUTO_EXECUTE, AUTO_EXIT_TARGET, AUTO_EXIT_STOP, SOUND_ALERTS

Rule: Parent OFF → all children forced OFF. Invalidation exits are not a
toggle; they always run while the engine is evaluating.
"""

from __future__ import annotations

from typing import Any, Callable

# toggle_id → parents that must ALL be ON
TOGGLE_DEPENDENCIES: dict[str, list[str]] = {
    "AUTO_EXECUTE": ["ENABLED"],
    "AUTO_EXIT_TARGET": ["ENABLED"],
    "AUTO_EXIT_STOP": ["ENABLED"],
    "SOUND_ALERTS": ["ENABLED"],
}

# toggle_id → settings key
TOGGLE_KEY_MAP: dict[str, str] = {
    "ENABLED": "paper_trading.enabled",
    "AUTO_EXECUTE": "paper_trading.auto_execute_on_trigger",
    "AUTO_EXIT_TARGET": "paper_trading.auto_exit_on_target",
    "AUTO_EXIT_STOP": "paper_trading.auto_exit_on_stop",
    "SOUND_ALERTS": "paper_trading.sound_alerts",
}


class ToggleRegistry:
    """Resolves effective toggle states against any dotted-key getter.

    The getter is either ``ConfigManager.get`` (startup defaults) or
    ``EngineSettings.get`` (live values edited from the settings page).
    """

    def __init__(self, getter: Callable[[str, Any], Any]) -> None:
        self._get = getter

    def raw(self, toggle_id: str) -> bool:
        key = TOGGLE_KEY_MAP.get(toggle_id)
        return bool(key and self._get(key, False))

    def blocked_by(self, toggle_id: str) -> str | None:
        """First ancestor that is OFF, or None when nothing upstream blocks."""
        for parent_id in TOGGLE_DEPENDENCIES.get(toggle_id, []):
            if not self.raw(parent_id):
                return parent_id
            upstream = self.blocked_by(parent_id)
            if upstream is not None:
                return upstream
        return None

    def is_enabled(self, toggle_id: str) -> bool:
        return self.raw(toggle_id) and self.blocked_by(toggle_id) is None

    def states(self) -> dict[str, bool]:
        return {toggle_id: self.is_enabled(toggle_id) for toggle_id in TOGGLE_KEY_MAP}

    def validate(self) -> list[str]:
        """Type errors and children left ON under an OFF parent (empty = valid)."""
        errors = []
        for toggle_id, key in TOGGLE_KEY_MAP.items():
            value = self._get(key, None)
            if value is not None and not isinstance(value, bool):
                errors.append(f"{toggle_id} ({key}): expected bool, got {type(value).__name__}")

        for child_id in TOGGLE_DEPENDENCIES:
            if not self.raw(child_id):
                continue
            parent_id = self.blocked_by(child_id)
            if parent_id is not None:
                errors.append(f"{child_id} is ON but {parent_id} is OFF (forced OFF at runtime)")
        return errors
