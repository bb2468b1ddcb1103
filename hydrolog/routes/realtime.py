"""WebSocket feed of hour slot changes."""
import asyncio
import logging
from datetime import date

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from hydrolog.logbook.realtime import change_broker
from hydrolog.routes.logs import LogKind

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/logs/{kind}/{day}")
async def log_changes(websocket: WebSocket, kind: LogKind, day: date):
    """
    Stream change events for one log sheet and day.

    The first message confirms the subscription. Every later message is a
    change event; clients re-fetch the day (or the hour) on receipt.
    Messages sent by the client are ignored.
    """
    await websocket.accept()
    subscription = change_broker.subscribe(kind.value, day)
    await websocket.send_json({"type": "subscribed", "kind": kind.value, "day": day.isoformat()})

    async def forward():
        async for event in subscription:
            await websocket.send_json({"type": "change", **event.to_dict()})

    forwarder = asyncio.create_task(forward())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Realtime client for {kind.value} {day} disconnected")
    finally:
        subscription.close()
        forwarder.cancel()
        try:
            await forwarder
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass
