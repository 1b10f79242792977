"""Tests for ConfigManager."""

import pytest

from battlecard.config.config_manager import ConfigManager, _deep_merge, env_overrides


class TestConfigManager:
    def test_base_only_load(self):
        cm = ConfigManager()
        cm.load()
        assert cm.get("system.name") == "battlecard"
        assert cm.get("system.strict_invariants") is False
        assert cm.get("paper_trading.leverage") == 10.0

    def test_profile_override(self):
        cm = ConfigManager()
        cm.load(profile="manual")
        # profile_manual.toml switches the automation off but keeps the master switch
        assert cm.get("paper_trading.enabled") is True
        assert cm.get("paper_trading.auto_execute_on_trigger") is False
        assert cm.get("paper_trading.auto_exit_on_stop") is False
        # untouched keys survive the merge
        assert cm.get("paper_trading.default_position_size") == 100.0

    def test_development_profile(self):
        cm = ConfigManager()
        cm.load(profile="development")
        assert cm.get("system.strict_invariants") is True
        assert cm.get("persistence.snapshot_path") == "data/battlecard_snapshot.json"
        assert cm.get("trigger.at_trigger_pct") == 0.3

    def test_unknown_profile(self):
        cm = ConfigManager()
        with pytest.raises(FileNotFoundError):
            cm.load(profile="does_not_exist")

    def test_dot_notation_access(self):
        cm = ConfigManager()
        cm.load()
        assert cm.get("trigger.at_trigger_pct") == 0.3
        assert cm.get("trigger.approaching_pct") == 1.5
        assert cm.get("trigger.approach_alert_pct") == 1.0
        assert cm.get("trigger.chaos_band_pct") == 0.5

    def test_default_value(self):
        cm = ConfigManager()
        cm.load()
        assert cm.get("nonexistent.key", "fallback") == "fallback"

    def test_set_and_get(self):
        cm = ConfigManager()
        cm.load()
        cm.set("engine.max_workers", 4)
        assert cm.get("engine.max_workers") == 4

    def test_load_dict_layers_over_base(self):
        cm = ConfigManager()
        cm.load_dict({"paper_trading": {"leverage": 3.0}})
        assert cm.get("paper_trading.leverage") == 3.0
        assert cm.get("paper_trading.starting_balance") == 10000.0

    def test_singleton(self):
        a = ConfigManager()
        a.load()
        b = ConfigManager()
        assert a is b
        assert b.get("system.name") == "battlecard"

    def test_toggle_enabled(self):
        cm = ConfigManager()
        cm.load()
        assert cm.is_toggle_enabled("ENABLED") is True
        assert cm.is_toggle_enabled("AUTO_EXECUTE") is True

    def test_toggle_cascade(self):
        cm = ConfigManager()
        cm.load()
        cm.set("paper_trading.enabled", False)
        # Children forced OFF even though their own flags are true
        assert cm.is_toggle_enabled("AUTO_EXECUTE") is False
        assert cm.is_toggle_enabled("AUTO_EXIT_STOP") is False
        assert cm.get("paper_trading.auto_exit_on_stop") is True

    def test_validate_toggles(self):
        cm = ConfigManager()
        cm.load()
        assert cm.validate_toggles() == []

    def test_toggle_before_load_raises(self):
        cm = ConfigManager()
        with pytest.raises(RuntimeError):
            cm.is_toggle_enabled("ENABLED")

    def test_reload(self):
        cm = ConfigManager()
        cm.load(profile="manual")
        cm.set("paper_trading.leverage", 50.0)
        cm.reload()
        assert cm.get("paper_trading.leverage") == 10.0
        assert cm.get("paper_trading.auto_execute_on_trigger") is False


class TestEnvironmentLayer:
    def test_typed_overrides(self):
        cm = ConfigManager()
        cm.load(environ={
            "BATTLECARD__PAPER_TRADING__LEVERAGE": "5",
            "BATTLECARD__PAPER_TRADING__SOUND_ALERTS": "false",
            "BATTLECARD__PERSISTENCE__SNAPSHOT_PATH": "/tmp/bc.json",
            "UNRELATED": "1",
        })
        assert cm.get("paper_trading.leverage") == 5
        assert cm.get("paper_trading.sound_alerts") is False
        assert cm.get("persistence.snapshot_path") == "/tmp/bc.json"
        assert cm.get("paper_trading.starting_balance") == 10000.0

    def test_environment_beats_profile(self):
        cm = ConfigManager()
        cm.load(profile="manual", environ={"BATTLECARD__PAPER_TRADING__AUTO_EXECUTE_ON_TRIGGER": "true"})
        assert cm.get("paper_trading.auto_execute_on_trigger") is True

    def test_reload_keeps_environment(self):
        cm = ConfigManager()
        cm.load(environ={"BATTLECARD__ENGINE__MAX_WORKERS": "4"})
        cm.set("engine.max_workers", 8)
        cm.reload()
        assert cm.get("engine.max_workers") == 4

    def test_env_overrides_helper(self):
        assert env_overrides({"BATTLECARD__SERVER__CORS_ORIGINS": '["http://a"]'}) == {
            "server": {"cors_origins": ["http://a"]}
        }
        assert env_overrides({"BATTLECARD__": "x"}) == {}


class TestValidate:
    def test_base_config_valid(self, config):
        assert config.validate() == []

    def test_inverted_trigger_bands(self, config):
        config.set("trigger.at_trigger_pct", 2.0)
        errors = config.validate()
        assert len(errors) == 1
        assert "at_trigger_pct" in errors[0]

    def test_bad_worker_count(self, config):
        config.set("engine.max_workers", 0)
        config.set("trigger.chaos_band_pct", -1)
        assert len(config.validate()) == 2


class TestDeepMerge:
    def test_nested_override(self):
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        merged = _deep_merge(base, {"a": {"b": 10}})
        assert merged == {"a": {"b": 10, "c": 2}, "d": 3}

    def test_base_not_mutated(self):
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}
