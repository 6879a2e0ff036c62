"""WebSocket endpoint streaming a user's render events.

Each connection subscribes to the user's channel on the event broker and
forwards every event as JSON until the client disconnects.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from thumbreel.services.event_broker import RenderEvent, RenderEventBroker, user_channel

router = APIRouter()
logger = logging.getLogger(__name__)


def create_connected_message(channel: str) -> dict[str, str]:
    """First message on a connection; events published after it are delivered."""
    return {"event": "connected", "channel": channel}


async def _forward_events(websocket: WebSocket, queue: asyncio.Queue[RenderEvent]) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(event.to_dict())


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients only listen; inbound messages are ignored
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/ws/users/{user_id}")
async def user_events(websocket: WebSocket, user_id: str) -> None:
    broker: RenderEventBroker = websocket.app.state.broker
    channel = user_channel(user_id)

    await websocket.accept()
    queue = await broker.register(channel)
    try:
        await websocket.send_json(create_connected_message(channel))
        forward = asyncio.create_task(_forward_events(websocket, queue))
        listen = asyncio.create_task(_wait_for_disconnect(websocket))
        done, pending = await asyncio.wait({forward, listen}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"[EVENTS] WebSocket for {channel} closed with error: {exc}")
    except WebSocketDisconnect:
        pass
    finally:
        await broker.unregister(channel, queue)
        logger.info(f"[EVENTS] WebSocket closed for {channel}")
