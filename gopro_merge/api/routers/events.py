import asyncio

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from gopro_merge.services.notifier import notifier
from gopro_merge.services.storage import is_valid_session_id

logger = structlog.get_logger()
router = APIRouter(tags=["Events"])

QUEUE_SIZE = 1000


@router.websocket("/ws/sessions/{session_id}")
async def session_events(websocket: WebSocket, session_id: str):
    """Streams the session's job events as JSON until the client disconnects."""
    if not is_valid_session_id(session_id):
        await websocket.close(code=1008)
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)

    def enqueue(event) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("event_dropped", session_id=session_id, job_id=event.job_id)

    def deliver(event) -> None:
        # Called from the listener thread.
        loop.call_soon_threadsafe(enqueue, event)

    subscription = notifier.subscribe(session_id, deliver)
    await websocket.accept()

    async def send_events() -> None:
        while True:
            event = await queue.get()
            await websocket.send_text(event.model_dump_json())

    sender = asyncio.create_task(send_events())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("websocket_disconnected", session_id=session_id)
    finally:
        notifier.unsubscribe(subscription)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("websocket_send_failed", session_id=session_id, error=str(e))
