import asyncio
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from server.dependencies.auth import verify_api_key

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SECONDS = 15.0


def format_sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


@router.get("")
async def stream_events(request: Request, _: None = Depends(verify_api_key)) -> StreamingResponse:
    """Server-sent event stream of engine events.

    Event names: `rag:status-updated`, `rag:reindex-progress`, `rag:block-indexed`.
    A comment line is sent every 15 seconds to keep idle connections open.
    """
    event_bus = request.app.state.rag_service.event_bus
    queue = event_bus.subscribe()

    async def generate():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event, payload = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event, payload)
        finally:
            event_bus.unsubscribe(queue)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
