"""WebSocket endpoint — pushes engine alerts as they fire and periodic dashboard snapshots.

Client messages:
    {"type": "ping"}                                → {"type": "pong"}
    {"type": "subscribe", "channels": [...]}        channels: alerts, dashboard, plans
    {"type": "history", "limit": 20}                → recent alerts, newest first
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from battlecard.core.data_types import Event
from battlecard.server.state import EngineState

logger = logging.getLogger(__name__)

DASHBOARD_INTERVAL_S = 1.0
CHANNELS = frozenset({"alerts", "dashboard", "plans"})
DEFAULT_CHANNELS = frozenset({"alerts", "dashboard"})


class ConnectionManager:
    """Open sockets and the channels each one listens to."""

    def __init__(self) -> None:
        self.active: dict[WebSocket, set[str]] = {}

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.active[ws] = set(DEFAULT_CHANNELS)
        logger.info("WebSocket client connected (%d active)", len(self.active))

    def disconnect(self, ws: WebSocket) -> None:
        if self.active.pop(ws, None) is not None:
            logger.info("WebSocket client disconnected (%d active)", len(self.active))

    def subscribe(self, ws: WebSocket, channels: list[str]) -> set[str]:
        wanted = {c for c in channels if c in CHANNELS}
        self.active[ws] = wanted
        return wanted

    def wants(self, ws: WebSocket, channel: str) -> bool:
        return channel in self.active.get(ws, ())

    async def broadcast(self, channel: str, message: dict[str, Any]) -> None:
        dead = []
        for ws, channels in list(self.active.items()):
            if channel not in channels:
                continue
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)

    async def broadcast_event(self, event: Event) -> None:
        """Event bus subscriber: forward an engine alert to subscribed clients."""
        await self.broadcast("alerts", {
            "type": "alert",
            "data": {"event": event.type.value, "timestamp_ns": event.timestamp_ns, **event.payload},
        })


manager = ConnectionManager()


async def _handle_message(ws: WebSocket, state: EngineState, raw: str) -> None:
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        await ws.send_json({"type": "error", "detail": "Messages must be JSON"})
        return

    kind = msg.get("type")
    if kind == "ping":
        await ws.send_json({"type": "pong"})
    elif kind == "subscribe":
        channels = manager.subscribe(ws, msg.get("channels", []))
        await ws.send_json({"type": "subscribed", "channels": sorted(channels)})
    elif kind == "history":
        await ws.send_json({"type": "history", "data": state.snapshot_alerts(int(msg.get("limit", 20)))})
    else:
        await ws.send_json({"type": "error", "detail": f"Unknown message type {kind!r}"})


async def websocket_endpoint(ws: WebSocket) -> None:
    await manager.connect(ws)
    state = EngineState()

    try:
        while True:
            try:
                raw = await asyncio.wait_for(ws.receive_text(), timeout=DASHBOARD_INTERVAL_S)
                await _handle_message(ws, state, raw)
                continue
            except asyncio.TimeoutError:
                pass

            if manager.wants(ws, "dashboard"):
                await ws.send_json({"type": "dashboard", "data": state.snapshot_dashboard()})
            if manager.wants(ws, "plans"):
                await ws.send_json({"type": "plans", "data": state.snapshot_plans()})

    except WebSocketDisconnect:
        manager.disconnect(ws)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        manager.disconnect(ws)
