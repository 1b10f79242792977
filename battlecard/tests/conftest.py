"""Shared fixtures for Battle Card tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from battlecard.config.config_manager import ConfigManager
from battlecard.config.settings import EngineSettings, SettingsStore
from battlecard.core.data_types import Scenario
from battlecard.core.event_bus import EventBus
from battlecard.core.types import ScenarioType
from battlecard.database.ledger import Ledger
from battlecard.database.plan_store import PlanStore
from battlecard.database.position_store import PositionStore
from battlecard.engine.scenario_engine import ScenarioEngine


class FakeClock:
    """Deterministic clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 14, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_scenarios(**overrides) -> list[Scenario]:
    """Long-biased plan around 100.

    A: entry 100 / stop 95 / t1 110     B: entry 97 / stop 94 / t1 105
    C: chaos level 106 (no trade)       D: invalidation 93
    """
    levels = {
        ScenarioType.A: dict(probability=40, entry_price=100.0, stop_loss=95.0, target1=110.0, target2=115.0),
        ScenarioType.B: dict(probability=30, entry_price=97.0, stop_loss=94.0, target1=105.0),
        ScenarioType.C: dict(probability=20, trigger_price=106.0),
        ScenarioType.D: dict(probability=10, trigger_price=93.0),
    }
    for key, value in overrides.items():
        levels[ScenarioType(key)] = value
    return [Scenario(type=t, **kw) for t, kw in levels.items()]


@pytest.fixture(autouse=True)
def reset_config():
    ConfigManager.reset()
    yield
    ConfigManager.reset()


@pytest.fixture
def config():
    """Loaded ConfigManager with the packaged base config."""
    cm = ConfigManager()
    cm.load()
    return cm


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings_store():
    """Account used in the worked examples: size 1000, 5x."""
    return SettingsStore(EngineSettings(default_position_size=1000.0, leverage=5.0))


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def events(event_bus):
    """Every event published on ``event_bus``, in order."""
    received = []
    event_bus.subscribe_all_sync(received.append)
    return received


@pytest.fixture
def engine(clock, settings_store, event_bus):
    eng = ScenarioEngine(
        plans=PlanStore(strict=True, clock=clock),
        positions=PositionStore(strict=True),
        ledger=Ledger(),
        settings=settings_store,
        event_bus=event_bus,
        clock=clock,
    )
    yield eng
    eng.close()


@pytest.fixture
def scenarios():
    """Factory: ``scenarios(D=dict(probability=10, stop_loss=90.0))`` replaces one slot."""
    return make_scenarios


@pytest.fixture
def make_plan(engine):
    """Factory for plans in ``engine``'s store, saved (active) unless ``activate=False``."""
    def _make(instrument: str = "BTC/USDT", activate: bool = True, **overrides):
        plan = engine.plans.create_plan(instrument, "4H", "Range low reclaim", make_scenarios(**overrides))
        return engine.plans.save_plan(plan) if activate else plan
    return _make


@pytest.fixture
def sample_plan(make_plan):
    """Active BTC/USDT plan with the ``make_scenarios`` levels."""
    return make_plan()
