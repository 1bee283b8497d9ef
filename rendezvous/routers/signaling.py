import json
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from rendezvous.hub import RelayHub

logger = logging.getLogger(__name__)

router = APIRouter()

hub = RelayHub()


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket):
    await websocket.accept()
    connection_id = await hub.connect(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.warning(f"⚠️  Ignoring binary frame from {connection_id}")
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"⚠️  Malformed JSON from {connection_id}")
                continue
            await hub.handle_message(connection_id, data)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"❌ Error in websocket for {connection_id}: {e}")
    finally:
        await hub.disconnect(connection_id)


@router.get("/rooms")
async def rooms_status():
    return {"rooms": hub.room_count(), "clients": hub.client_count()}


@router.get("/rooms/{room_id}")
async def room_detail(room_id: str):
    members = hub.room_members(room_id)
    if not members:
        raise HTTPException(status_code=404, detail="Room not found")
    return {"room": room_id, "members": members}
