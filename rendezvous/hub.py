import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from pydantic import ValidationError

from rendezvous.models import (
    ConnectedMessage,
    Envelope,
    JoinRoomMessage,
    LeaveRoomMessage,
    RELAY_KINDS,
    UserConnectedMessage,
    UserDisconnectedMessage,
    client_message_adapter,
    relayed_message,
)

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Anything the Hub can push JSON to; a Starlette WebSocket fits."""

    async def send_json(self, data: Any) -> None: ...


class RelayHub:
    """Room registry and message router.

    Every mutation of the registry happens under ``_lock``. Recipients are
    snapshotted while the lock is held and messages go out after it is
    released, so one slow client cannot stall joins or disconnects.
    """

    def __init__(self):
        self.connections: Dict[str, Channel] = {}
        self.rooms: Dict[str, Set[str]] = {}
        self.memberships: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def connect(self, channel: Channel) -> str:
        connection_id = uuid.uuid4().hex
        async with self._lock:
            self.connections[connection_id] = channel
        logger.info(f"🔌 Client {connection_id} connected")
        await self._send(connection_id, channel, ConnectedMessage(peer_id=connection_id))
        return connection_id

    async def join_room(self, connection_id: str, room_id: str) -> bool:
        if not room_id:
            raise ValueError("room_id must not be empty")

        async with self._lock:
            if connection_id not in self.connections:
                return False
            current = self.memberships.get(connection_id)
            if current == room_id:
                return False
            if current is not None:
                self._remove_member(connection_id)
            targets = self._channels(self.rooms.get(room_id, ()))
            self.rooms.setdefault(room_id, set()).add(connection_id)
            self.memberships[connection_id] = room_id

        logger.info(f"✅ Client {connection_id} joined room {room_id}")
        message = UserConnectedMessage(peer_id=connection_id)
        for peer_id, channel in targets:
            await self._send(peer_id, channel, message)
        return True

    async def leave_room(self, connection_id: str) -> Optional[str]:
        async with self._lock:
            return self._remove_member(connection_id)

    async def relay(self, kind: str, sender_id: str, target_id: str, payload: Dict[str, Any]) -> bool:
        """Forward ``payload`` to ``target_id`` stamped with the sender's id.

        Returns False when the message was dropped: unknown target, sender in
        no room, target in a different room, or target is the sender itself.
        Nothing is sent back to the sender in that case.
        """
        message = relayed_message(kind, sender_id, payload)
        async with self._lock:
            channel = self.connections.get(target_id)
            room_id = self.memberships.get(sender_id)
            deliverable = (
                channel is not None
                and target_id != sender_id
                and room_id is not None
                and self.memberships.get(target_id) == room_id
            )
        if not deliverable:
            logger.debug(f"Dropped {kind} from {sender_id} to unreachable {target_id}")
            return False
        await self._send(target_id, channel, message)
        return True

    async def disconnect(self, connection_id: str) -> bool:
        async with self._lock:
            if connection_id not in self.connections:
                return False
            del self.connections[connection_id]
            self._remove_member(connection_id)
            targets = self._channels(self.connections)

        logger.info(f"❌ Client {connection_id} disconnected")
        message = UserDisconnectedMessage(peer_id=connection_id)
        for peer_id, channel in targets:
            await self._send(peer_id, channel, message)
        return True

    async def handle_message(self, connection_id: str, data: Any) -> None:
        """Validate one inbound client message and dispatch it."""
        try:
            message = client_message_adapter.validate_python(data)
        except ValidationError as e:
            logger.warning(f"⚠️  Ignoring invalid message from {connection_id}: {e.errors()}")
            return

        logger.info(f"📨 Received {message.type} from {connection_id}")
        if isinstance(message, JoinRoomMessage):
            await self.join_room(connection_id, message.room_id)
        elif isinstance(message, LeaveRoomMessage):
            await self.leave_room(connection_id)
        else:
            payload = getattr(message, RELAY_KINDS[message.type])
            await self.relay(message.type, connection_id, message.to, payload)

    def room_members(self, room_id: str) -> List[str]:
        return sorted(self.rooms.get(room_id, ()))

    def room_of(self, connection_id: str) -> Optional[str]:
        return self.memberships.get(connection_id)

    def room_count(self) -> int:
        return len(self.rooms)

    def client_count(self) -> int:
        return len(self.connections)

    def _remove_member(self, connection_id: str) -> Optional[str]:
        # Caller holds _lock
        room_id = self.memberships.pop(connection_id, None)
        if room_id is None:
            return None
        members = self.rooms.get(room_id)
        if members is not None:
            members.discard(connection_id)
            logger.info(f"👋 Client {connection_id} left room {room_id}")
            if not members:
                del self.rooms[room_id]
                logger.info(f"🗑️  Room {room_id} is now empty")
        return room_id

    def _channels(self, connection_ids) -> List[Tuple[str, Channel]]:
        return [
            (connection_id, self.connections[connection_id])
            for connection_id in connection_ids
            if connection_id in self.connections
        ]

    async def _send(self, connection_id: str, channel: Channel, message: Envelope) -> None:
        try:
            await channel.send_json(message.to_wire())
        except Exception as e:
            logger.error(f"❌ Error sending to client {connection_id}: {e}")
