"""Tests for ActionRegistry — at-most-once flags, GC, persistence."""

import threading

from battlecard.core.types import ExitReason, ScenarioType
from battlecard.engine.action_registry import (
    ActionRegistry,
    ApproachAlerted,
    ChaosFlagged,
    EnteredOnScenario,
    ExitedBy,
)


class TestActionRegistry:
    def test_claim_once(self):
        reg = ActionRegistry()
        assert reg.claim("p1", EnteredOnScenario(ScenarioType.A)) is True
        assert reg.claim("p1", EnteredOnScenario(ScenarioType.A)) is False
        assert reg.has("p1", EnteredOnScenario(ScenarioType.A))

    def test_flags_scoped_per_plan(self):
        reg = ActionRegistry()
        reg.claim("p1", EnteredOnScenario(ScenarioType.A))
        assert reg.claim("p2", EnteredOnScenario(ScenarioType.A)) is True

    def test_separator_in_plan_id_cannot_collide(self):
        reg = ActionRegistry()
        reg.claim("card-1", ExitedBy("x", ExitReason.STOP_HIT))
        assert reg.claim("card", ExitedBy("1-x", ExitReason.STOP_HIT)) is True

    def test_exit_flags_per_reason(self):
        reg = ActionRegistry()
        assert reg.claim("p1", ExitedBy("pos-1", ExitReason.STOP_HIT))
        assert reg.claim("p1", ExitedBy("pos-1", ExitReason.TARGET1_HIT))

    def test_release(self):
        reg = ActionRegistry()
        flag = EnteredOnScenario(ScenarioType.B)
        reg.claim("p1", flag)
        reg.release("p1", flag)
        assert reg.claim("p1", flag) is True

    def test_entered_scenarios(self):
        reg = ActionRegistry()
        reg.claim("p1", EnteredOnScenario(ScenarioType.A))
        reg.claim("p1", ApproachAlerted(ScenarioType.B))
        assert reg.entered_scenarios("p1") == {ScenarioType.A}

    def test_retain_plans_drops_deleted(self):
        reg = ActionRegistry()
        reg.claim("live", EnteredOnScenario(ScenarioType.A))
        reg.claim("gone", EnteredOnScenario(ScenarioType.A))
        reg.claim("gone", ChaosFlagged("pos-9"))
        assert reg.retain_plans({"live"}) == 1
        assert reg.fired("gone") == frozenset()
        assert len(reg) == 1

    def test_forget_plan(self):
        reg = ActionRegistry()
        reg.claim("p1", EnteredOnScenario(ScenarioType.A))
        reg.forget_plan("p1")
        assert len(reg) == 0

    def test_round_trip(self):
        reg = ActionRegistry()
        reg.claim("p1", EnteredOnScenario(ScenarioType.A))
        reg.claim("p1", ExitedBy("pos-1", ExitReason.INVALIDATION))
        reg.claim("p1", ApproachAlerted(ScenarioType.B))
        reg.claim("p2", ChaosFlagged("pos-2"))
        restored = ActionRegistry.from_dict(reg.to_dict())
        assert restored.fired("p1") == reg.fired("p1")
        assert restored.fired("p2") == reg.fired("p2")
        assert restored.claim("p1", ExitedBy("pos-1", ExitReason.INVALIDATION)) is False

    def test_concurrent_claims_single_winner(self):
        reg = ActionRegistry()
        wins = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            if reg.claim("p1", EnteredOnScenario(ScenarioType.A)):
                wins.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(wins) == 1
