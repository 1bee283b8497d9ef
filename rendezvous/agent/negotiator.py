import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from rendezvous.config import settings
from rendezvous.errors import (
    CallInProgressError,
    InvalidRoomError,
    MediaAcquisitionError,
    NegotiationError,
)
from rendezvous.models import (
    AnswerMessage,
    ConnectedMessage,
    Envelope,
    IceCandidateMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    OfferMessage,
    RelayedAnswer,
    RelayedIceCandidate,
    RelayedOffer,
    UserConnectedMessage,
    UserDisconnectedMessage,
    hub_message_adapter,
)
from .base import LocalMedia, MediaSource, PeerConnection, PeerConnectionFactory, SignalingChannel

logger = logging.getLogger(__name__)


class NegotiationState(str, enum.Enum):
    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring-media"
    JOINED_WAITING = "joined-waiting"
    NEGOTIATING_OFFER = "negotiating-offer"
    NEGOTIATING_ANSWER = "negotiating-answer"
    CONNECTED = "connected"
    ENDED = "ended"


CANDIDATE_STATES = (
    NegotiationState.NEGOTIATING_OFFER,
    NegotiationState.NEGOTIATING_ANSWER,
    NegotiationState.CONNECTED,
)


@dataclass
class PeerSession:
    room_id: Optional[str] = None
    remote_peer_id: Optional[str] = None
    local_media: Optional[LocalMedia] = None
    remote_tracks: List[Any] = field(default_factory=list)
    peer_connection: Optional[PeerConnection] = None


class NegotiationAgent:
    """Client side of the offer/answer/ICE handshake with one remote peer.

    Hub messages go in through ``handle_message``; outgoing messages leave
    through ``signaling.send``. Offer, answer and user-connected handling is
    serialized by a lock so only one negotiation runs at a time. ICE
    candidates and ``end_call`` never wait for it. Every step re-checks that
    its peer connection is still the current one after each await, so a call
    ended mid-negotiation does not send anything further.
    """

    def __init__(
        self,
        signaling: SignalingChannel,
        media_source: MediaSource,
        peer_factory: PeerConnectionFactory,
        *,
        on_status: Optional[Callable[[str], None]] = None,
        on_track: Optional[Callable[[Any], None]] = None,
        buffer_early_candidates: Optional[bool] = None,
    ):
        self.signaling = signaling
        self.media_source = media_source
        self.peer_factory = peer_factory
        self.on_status = on_status
        self.on_track = on_track
        if buffer_early_candidates is None:
            buffer_early_candidates = settings.BUFFER_EARLY_CANDIDATES
        self.buffer_early_candidates = buffer_early_candidates

        self.state = NegotiationState.IDLE
        self.session = PeerSession()
        self.local_id: Optional[str] = None
        self._early_candidates: Dict[str, List[Dict[str, Any]]] = {}
        self._negotiation_lock = asyncio.Lock()

    # Local actions

    async def start_call(self, room_id: str) -> None:
        await self._enter_room(room_id, "Waiting for someone to join room: {}")

    async def join_call(self, room_id: str) -> None:
        await self._enter_room(room_id, "Joined room: {}, waiting for call...")

    async def end_call(self) -> None:
        session = self.session
        if (
            self.state is NegotiationState.ENDED
            and session.peer_connection is None
            and session.local_media is None
        ):
            return

        logger.info("Ending call...")
        self.session = PeerSession()
        self._early_candidates.clear()
        self.state = NegotiationState.ENDED

        if session.peer_connection is not None:
            await session.peer_connection.close()
        if session.local_media is not None:
            session.local_media.stop()
        session.remote_tracks.clear()

        if session.room_id:
            try:
                await self.signaling.send(LeaveRoomMessage(room_id=session.room_id).to_wire())
            except Exception as e:
                logger.error(f"❌ Could not notify hub of room departure: {e}")
        self._status("Call ended")

    # Hub messages

    async def handle_message(self, data: Any) -> None:
        try:
            message = hub_message_adapter.validate_python(data)
        except ValidationError as e:
            logger.warning(f"⚠️  Ignoring invalid hub message: {e.errors()}")
            return

        if isinstance(message, ConnectedMessage):
            self.local_id = message.peer_id
            self._status("Connected to server")
        elif isinstance(message, UserConnectedMessage):
            await self.on_user_connected(message.peer_id)
        elif isinstance(message, RelayedOffer):
            await self.on_offer(message.offer, message.sender_id)
        elif isinstance(message, RelayedAnswer):
            await self.on_answer(message.answer, message.sender_id)
        elif isinstance(message, RelayedIceCandidate):
            await self.on_ice_candidate(message.candidate, message.sender_id)
        elif isinstance(message, UserDisconnectedMessage):
            await self.on_user_disconnected(message.peer_id)

    async def on_user_connected(self, peer_id: str) -> None:
        async with self._negotiation_lock:
            if self.state is not NegotiationState.JOINED_WAITING:
                logger.info(f"Ignoring user-connected for {peer_id} while {self.state.value}")
                return

            self.session.remote_peer_id = peer_id
            self._status("User connected, creating offer...")
            pc = self._new_peer_connection()
            self.state = NegotiationState.NEGOTIATING_OFFER
            try:
                offer = await pc.create_offer()
                await pc.set_local_description(offer)
            except NegotiationError as e:
                await self._negotiation_failed(pc, "Error creating offer", e)
                return
            if pc is not self.session.peer_connection:
                return

            logger.info(f"Sending offer to: {peer_id}")
            await self._send(OfferMessage(offer=pc.local_description or offer, to=peer_id))

    async def on_offer(self, offer: Dict[str, Any], sender_id: str) -> None:
        async with self._negotiation_lock:
            if self.state in (NegotiationState.CONNECTED, NegotiationState.ENDED):
                logger.info(f"Ignoring offer from {sender_id} while {self.state.value}")
                return

            logger.info(f"Received offer from: {sender_id}")
            self.session.remote_peer_id = sender_id
            self._status("Received offer, creating answer...")
            previous = self.session.peer_connection
            pc = self._new_peer_connection()
            self.state = NegotiationState.NEGOTIATING_ANSWER
            if previous is not None:
                await previous.close()
                if pc is not self.session.peer_connection:
                    return
            try:
                await pc.set_remote_description(offer)
                answer = await pc.create_answer()
                await pc.set_local_description(answer)
            except NegotiationError as e:
                await self._negotiation_failed(pc, "Error handling offer", e)
                return
            if pc is not self.session.peer_connection:
                return

            await self._flush_early_candidates(sender_id, pc)
            logger.info(f"Sending answer to: {sender_id}")
            await self._send(AnswerMessage(answer=pc.local_description or answer, to=sender_id))

    async def on_answer(self, answer: Dict[str, Any], sender_id: str) -> None:
        async with self._negotiation_lock:
            pc = self.session.peer_connection
            if (
                self.state is not NegotiationState.NEGOTIATING_OFFER
                or pc is None
                or sender_id != self.session.remote_peer_id
            ):
                logger.info(f"Ignoring answer from {sender_id} while {self.state.value}")
                return

            self._status("Received answer, waiting for connection...")
            try:
                await pc.set_remote_description(answer)
            except NegotiationError as e:
                await self._negotiation_failed(pc, "Error establishing connection", e)
                return
            if pc is self.session.peer_connection:
                await self._flush_early_candidates(sender_id, pc)

    async def on_ice_candidate(self, candidate: Dict[str, Any], sender_id: str) -> None:
        pc = self.session.peer_connection
        ready = (
            pc is not None
            and self.state in CANDIDATE_STATES
            and pc.remote_description is not None
        )
        if not ready:
            if self.buffer_early_candidates and self.state is not NegotiationState.ENDED:
                self._early_candidates.setdefault(sender_id, []).append(candidate)
                logger.debug(f"Buffered early ICE candidate from {sender_id}")
            else:
                logger.debug(f"Dropped ICE candidate from {sender_id}: no active peer connection")
            return
        await self._add_candidate(pc, candidate)

    async def on_user_disconnected(self, peer_id: str) -> None:
        self._early_candidates.pop(peer_id, None)
        if peer_id == self.session.remote_peer_id:
            self._status("Remote user disconnected")
            await self.end_call()

    # Peer connection events

    async def on_remote_track(self, pc: PeerConnection, track: Any) -> None:
        if pc is not self.session.peer_connection:
            return
        self.session.remote_tracks.append(track)
        if self.on_track is not None:
            self.on_track(track)

    async def on_local_candidate(self, pc: PeerConnection, candidate: Dict[str, Any]) -> None:
        remote_peer_id = self.session.remote_peer_id
        if pc is not self.session.peer_connection or remote_peer_id is None:
            return
        logger.debug("Sending ICE candidate")
        await self._send(IceCandidateMessage(candidate=candidate, to=remote_peer_id))

    async def on_connection_state(self, pc: PeerConnection, state: str) -> None:
        if pc is not self.session.peer_connection:
            return
        self._status(f"Connection state: {state}")
        if state == "connected" and self.state in (
            NegotiationState.NEGOTIATING_OFFER,
            NegotiationState.NEGOTIATING_ANSWER,
        ):
            self.state = NegotiationState.CONNECTED
        elif state == "failed":
            await self.end_call()

    # Internals

    async def _enter_room(self, room_id: str, waiting_status: str) -> None:
        if not room_id or not room_id.strip():
            self._status("Please enter a room ID")
            raise InvalidRoomError("Please enter a room ID")
        if self.state not in (NegotiationState.IDLE, NegotiationState.ENDED):
            raise CallInProgressError(f"Cannot start a call while {self.state.value}")

        self.state = NegotiationState.ACQUIRING_MEDIA
        self._status("Requesting camera/microphone access...")
        try:
            local_media = await self.media_source.acquire()
        except MediaAcquisitionError as e:
            self.state = NegotiationState.IDLE
            self._status(f"Error: {e}")
            raise

        if self.state is not NegotiationState.ACQUIRING_MEDIA:
            # end_call ran while the devices were opening
            local_media.stop()
            return

        self._status("Local stream started")
        self.session = PeerSession(room_id=room_id, local_media=local_media)
        self.state = NegotiationState.JOINED_WAITING
        try:
            await self._send(JoinRoomMessage(room_id=room_id))
        except Exception:
            self.session = PeerSession()
            self.state = NegotiationState.IDLE
            local_media.stop()
            self._status("Error: could not reach the signaling server")
            raise
        self._status(waiting_status.format(room_id))

    def _new_peer_connection(self) -> PeerConnection:
        pc = self.peer_factory.create(self)
        local_media = self.session.local_media
        if local_media is not None:
            for track in local_media.tracks:
                pc.add_track(track)
        else:
            logger.error("No local stream available when creating peer connection")
        self.session.peer_connection = pc
        self.session.remote_tracks = []
        return pc

    async def _negotiation_failed(self, pc: PeerConnection, status: str, error: Exception) -> None:
        logger.error(f"{status}: {error}", exc_info=error)
        self._status(status)
        await pc.close()
        if pc is not self.session.peer_connection:
            return
        self.session.peer_connection = None
        self.session.remote_peer_id = None
        self.session.remote_tracks = []
        if self.session.room_id:
            self.state = NegotiationState.JOINED_WAITING
        else:
            self.state = NegotiationState.IDLE

    async def _flush_early_candidates(self, sender_id: str, pc: PeerConnection) -> None:
        for candidate in self._early_candidates.pop(sender_id, []):
            await self._add_candidate(pc, candidate)

    async def _add_candidate(self, pc: PeerConnection, candidate: Dict[str, Any]) -> None:
        try:
            await pc.add_ice_candidate(candidate)
        except NegotiationError as e:
            logger.error(f"Error adding ICE candidate: {e}")

    async def _send(self, message: Envelope) -> None:
        await self.signaling.send(message.to_wire())

    def _status(self, message: str) -> None:
        logger.info(f"[STATUS] {message}")
        if self.on_status is not None:
            self.on_status(message)
