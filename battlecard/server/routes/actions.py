"""Action endpoints — mutations (quotes, plan editing, manual closes, settings)."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from battlecard.core.data_types import Scenario
from battlecard.core.types import PlanStatus, ScenarioType
from battlecard.engine.scenario_engine import ScenarioEngine
from battlecard.server.state import EngineState

router = APIRouter(prefix="/api", tags=["actions"])


class QuoteRequest(BaseModel):
    instrument: str
    price: float = Field(gt=0)
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None


class ScenarioRequest(BaseModel):
    type: ScenarioType
    probability: int = Field(ge=0, le=100)
    name: str = ""
    description: str = ""
    trigger_price: Optional[float] = Field(None, gt=0)
    entry_price: Optional[float] = Field(None, gt=0)
    stop_loss: Optional[float] = Field(None, gt=0)
    target1: Optional[float] = Field(None, gt=0)
    target2: Optional[float] = Field(None, gt=0)
    target3: Optional[float] = Field(None, gt=0)


class PlanRequest(BaseModel):
    instrument: str
    timeframe: str = ""
    thesis: str = ""
    scenarios: Optional[list[ScenarioRequest]] = None
    activate: bool = True


class ScenarioUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    trigger_price: Optional[float] = Field(None, gt=0)
    entry_price: Optional[float] = Field(None, gt=0)
    stop_loss: Optional[float] = Field(None, gt=0)
    target1: Optional[float] = Field(None, gt=0)
    target2: Optional[float] = Field(None, gt=0)
    target3: Optional[float] = Field(None, gt=0)


class ProbabilityRequest(BaseModel):
    scenario_type: ScenarioType
    value: int


class ClosePlanRequest(BaseModel):
    outcome: Literal["completed", "closed"] = "closed"


class ClosePositionRequest(BaseModel):
    price: Optional[float] = Field(None, gt=0)


class AmendLevelsRequest(BaseModel):
    stop_loss: Optional[float] = Field(None, gt=0)
    target1: Optional[float] = Field(None, gt=0)
    target2: Optional[float] = Field(None, gt=0)
    target3: Optional[float] = Field(None, gt=0)


class NoteRequest(BaseModel):
    note: str


class SettingsRequest(BaseModel):
    enabled: Optional[bool] = None
    auto_execute_on_trigger: Optional[bool] = None
    auto_exit_on_target: Optional[bool] = None
    auto_exit_on_stop: Optional[bool] = None
    sound_alerts: Optional[bool] = None
    default_position_size: Optional[float] = None
    leverage: Optional[float] = None
    starting_balance: Optional[float] = None


def _engine() -> ScenarioEngine:
    engine = EngineState().engine
    if engine is None:
        raise HTTPException(status_code=409, detail="Engine not started.")
    return engine


@router.post("/quotes")
async def push_quote(req: QuoteRequest):
    _engine()
    stream = EngineState().quote_stream
    if stream is None:
        raise HTTPException(status_code=409, detail="Quote stream not started.")
    actions = await stream.submit(req.instrument, req.price, req.high_24h, req.low_24h)
    return {"instrument": req.instrument, "price": req.price, "actions": actions}


@router.post("/plans", status_code=201)
def create_plan(req: PlanRequest):
    engine = _engine()
    scenarios = None
    if req.scenarios is not None:
        scenarios = [Scenario(**s.model_dump()) for s in req.scenarios]
    plan = engine.plans.create_plan(req.instrument, req.timeframe, req.thesis, scenarios)
    if req.activate:
        plan = engine.plans.save_plan(plan)
    engine.persist()
    return plan.to_dict()


@router.post("/plans/{plan_id}/activate")
def activate_plan(plan_id: str):
    engine = _engine()
    plan = engine.plans.save_plan(engine.plans.get(plan_id))
    engine.persist()
    return plan.to_dict()


@router.post("/plans/{plan_id}/probability")
def set_probability(plan_id: str, req: ProbabilityRequest):
    engine = _engine()
    plan = engine.plans.set_probability(plan_id, req.scenario_type, req.value)
    engine.persist()
    return plan.to_dict()


@router.patch("/plans/{plan_id}/scenarios/{scenario_type}")
def update_scenario(plan_id: str, scenario_type: ScenarioType, req: ScenarioUpdateRequest):
    engine = _engine()
    plan = engine.plans.update_scenario(plan_id, scenario_type, **req.model_dump(exclude_unset=True))
    engine.persist()
    return plan.to_dict()


@router.post("/plans/{plan_id}/close")
def close_plan(plan_id: str, req: ClosePlanRequest):
    plan = _engine().close_plan(plan_id, PlanStatus(req.outcome))
    return plan.to_dict()


@router.delete("/plans/{plan_id}")
def delete_plan(plan_id: str):
    plan = _engine().delete_plan(plan_id)
    return {"deleted": plan.id}


@router.post("/positions/{position_id}/close")
def close_position(position_id: str, req: ClosePositionRequest):
    engine = _engine()
    entry = engine.close_position_manual(position_id, req.price)
    if entry is None:
        return {"position_id": position_id, "status": "already_closed"}
    return entry.to_dict()


@router.patch("/positions/{position_id}")
def amend_position(position_id: str, req: AmendLevelsRequest):
    position = _engine().amend_position(position_id, **req.model_dump(exclude_unset=True))
    if position is None:
        return {"position_id": position_id, "status": "already_closed"}
    return position.to_dict()


@router.post("/journal/{entry_id}/notes")
def add_note(entry_id: str, req: NoteRequest):
    engine = _engine()
    entry = engine.ledger.add_note(entry_id, req.note)
    engine.persist()
    return entry.to_dict()


@router.put("/settings")
def update_settings(req: SettingsRequest):
    changes = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
    settings = _engine().update_settings(**changes)
    return settings.to_dict()


@router.post("/account/reset")
def reset_account():
    engine = _engine()
    engine.reset_account()
    return engine.account()
