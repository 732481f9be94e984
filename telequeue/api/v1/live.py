from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from typing import Optional
from uuid import UUID, uuid4

from telequeue.api.deps import get_coordinator
from telequeue.core.exceptions import QueueError
from telequeue.services.live_events import LiveEventHandler
from telequeue.services.queue_coordinator import QueueCoordinator

router = APIRouter()

@router.websocket("/live")
async def live_connection(
    websocket: WebSocket,
    user_type: Optional[str] = Query(None, alias="userType"),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    await websocket.accept()
    connection_id = str(uuid4())
    coordinator.registry.attach(connection_id, websocket)

    handler = LiveEventHandler(coordinator, connection_id)
    try:
        if user_type and user_id:
            try:
                await coordinator.connect(user_type, user_id, connection_id, websocket)
            except QueueError as exc:
                await coordinator.notifier.send_error(connection_id, exc.detail)

        while True:
            raw = await websocket.receive_text()
            await handler.handle(raw)
    except WebSocketDisconnect:
        pass
    finally:
        await coordinator.disconnect(connection_id)
