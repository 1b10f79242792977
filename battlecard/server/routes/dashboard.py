"""Dashboard REST endpoints — read-only snapshots of engine state."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, HTTPException

from battlecard.core.types import Outcome
from battlecard.server.state import EngineState

router = APIRouter(prefix="/api", tags=["dashboard"])


def _state() -> EngineState:
    state = EngineState()
    if state.engine is None:
        raise HTTPException(status_code=409, detail="Engine not started.")
    return state


@router.get("/dashboard")
def get_dashboard():
    return EngineState().snapshot_dashboard()


@router.get("/account")
def get_account():
    return _state().engine.account()


@router.get("/plans")
def get_plans():
    return _state().snapshot_plans()


@router.get("/plans/{plan_id}")
def get_plan(plan_id: str):
    return _state().snapshot_plan_detail(plan_id)


@router.get("/positions")
def get_positions(status: Literal["open", "closed", "all"] = "open"):
    return _state().snapshot_positions(status)


@router.get("/journal")
def get_journal(outcome: Outcome | None = None, q: str | None = None):
    return _state().snapshot_journal(outcome=outcome, query=q)


@router.get("/journal/summary")
def get_journal_summary():
    return _state().snapshot_journal_summary()


@router.get("/settings")
def get_settings():
    return _state().snapshot_settings()


@router.get("/quotes")
def get_quotes():
    return EngineState().snapshot_quotes()


@router.get("/alerts")
def get_alerts(limit: int = 20):
    return EngineState().snapshot_alerts(limit)
