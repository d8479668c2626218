"""
WebSocket Routes for Real-time Event Streaming.

Streams engine and watcher events to connected clients.
"""

from typing import Optional
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import logging

from visaflow.engine.events import Subscription


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.to_dict())


@router.websocket("/ws/events")
async def websocket_events(websocket: WebSocket, types: Optional[str] = None):
    """
    WebSocket endpoint streaming workflow events.

    Optional query parameter `types` filters by event type, comma
    separated (e.g. `/ws/events?types=started,completed`).

    Message format (server -> client):
    ```json
    {
        "type": "advanced",
        "source": "engine",
        "instance_id": "...",
        "data": {"from_node": "Visa", "to_node": "Résultat du visa", ...},
        "timestamp": "2024-01-01T12:00:00+00:00"
    }
    ```

    The first message is `{"type": "subscribed", ...}`; events published
    after it are delivered. Clients may send `{"action": "ping"}` and
    receive `{"type": "pong"}`.
    """
    services = websocket.app.state.services
    wanted = [t.strip() for t in types.split(",") if t.strip()] if types else None

    await websocket.accept()
    subscription = services.events.subscribe(wanted)
    await websocket.send_json({"type": "subscribed", "types": wanted})
    logger.info(f"WebSocket subscribed to events (types={wanted or 'all'})")

    forward_task = asyncio.create_task(_forward(websocket, subscription))
    try:
        while True:
            data = await websocket.receive_json()
            if data.get("action") == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await websocket.send_json({
                    "type": "error",
                    "error": f"Unknown action '{data.get('action')}'",
                })
    except WebSocketDisconnect:
        logger.info("Client disconnected from event stream")
    finally:
        forward_task.cancel()
        try:
            await forward_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Event stream forwarding stopped: {e}")
        subscription.close()
