"""FastAPI application — Battle Card paper-trading backend."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from battlecard.config.config_manager import ConfigManager
from battlecard.core.errors import (
    BattleCardError,
    InvalidTransition,
    InvariantViolation,
    LedgerEntryNotFound,
    MissingQuote,
    PlanNotFound,
    PositionNotFound,
    QuoteStreamUnavailable,
)
from battlecard.core.event_bus import EventBus
from battlecard.engine.quote_stream import QuoteStream
from battlecard.engine.scenario_engine import ScenarioEngine
from battlecard.server.routes.actions import router as actions_router
from battlecard.server.routes.dashboard import router as dashboard_router
from battlecard.server.state import EngineState
from battlecard.server.ws import manager, websocket_endpoint

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def _load_config() -> ConfigManager:
    config = ConfigManager()
    if not config.raw:
        config.load(profile=os.environ.get("BATTLECARD_PROFILE") or None)
    return config


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = EngineState()
    config = _load_config()
    if state.engine is None:
        bus = EventBus(max_queue_depth=config.get("event_bus.max_queue_depth", 1000))
        state.attach(ScenarioEngine.from_config(config, event_bus=bus), bus)
        logger.info("Engine started (%d plans)", len(state.engine.plans))
    if state.event_bus is not None:
        unsubscribe = state.event_bus.subscribe_all(manager.broadcast_event)
        await state.event_bus.start()
    state.quote_stream = QuoteStream(state.engine, config.get("engine.quote_queue_depth", 1000))
    await state.quote_stream.start()
    try:
        yield
    finally:
        await state.quote_stream.stop()
        state.quote_stream = None
        if state.event_bus is not None:
            await state.event_bus.stop()
            unsubscribe()
        state.engine.close()


app = FastAPI(
    title="Battle Card Engine",
    version="1.0.0",
    description="Scenario trigger engine and paper-trading simulator for Battle Card trade plans",
    lifespan=lifespan,
)

# Loaded here too so profile and environment CORS settings apply in --reload workers
app.add_middleware(
    CORSMiddleware,
    allow_origins=_load_config().get("server.cors_origins", DEFAULT_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(dashboard_router)
app.include_router(actions_router)

app.add_api_websocket_route("/ws", websocket_endpoint)


def _status_for(exc: BattleCardError) -> int:
    if isinstance(exc, (PlanNotFound, PositionNotFound, LedgerEntryNotFound)):
        return 404
    if isinstance(exc, (InvalidTransition, InvariantViolation, MissingQuote)):
        return 409
    if isinstance(exc, QuoteStreamUnavailable):
        return 503
    return 422


@app.exception_handler(BattleCardError)
async def battlecard_error_handler(request: Request, exc: BattleCardError):
    return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})


@app.get("/")
def root():
    return {"service": "Battle Card Engine", "version": "1.0.0"}
