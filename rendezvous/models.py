from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing import Annotated, Optional, Dict, Any, Literal, Union


class SessionDescription(BaseModel):
    type: str
    sdp: str


class IceCandidate(BaseModel):
    candidate: str
    sdpMid: Optional[str] = None
    sdpMLineIndex: Optional[int] = None


class Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# Client -> Hub

class JoinRoomMessage(Envelope):
    type: Literal["join-room"] = "join-room"
    room_id: str = Field(alias="roomId", min_length=1)


class LeaveRoomMessage(Envelope):
    type: Literal["leave-room"] = "leave-room"
    room_id: Optional[str] = Field(default=None, alias="roomId")


class OfferMessage(Envelope):
    type: Literal["offer"] = "offer"
    offer: Dict[str, Any]
    to: str = Field(min_length=1)


class AnswerMessage(Envelope):
    type: Literal["answer"] = "answer"
    answer: Dict[str, Any]
    to: str = Field(min_length=1)


class IceCandidateMessage(Envelope):
    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: Dict[str, Any]
    to: str = Field(min_length=1)


ClientMessage = Annotated[
    Union[JoinRoomMessage, LeaveRoomMessage, OfferMessage, AnswerMessage, IceCandidateMessage],
    Field(discriminator="type"),
]
client_message_adapter = TypeAdapter(ClientMessage)

# Unicast kinds and the payload field each one carries
RELAY_KINDS = {
    "offer": "offer",
    "answer": "answer",
    "ice-candidate": "candidate",
}


# Hub -> client

class ConnectedMessage(Envelope):
    type: Literal["connected"] = "connected"
    peer_id: str = Field(alias="peerId")


class UserConnectedMessage(Envelope):
    type: Literal["user-connected"] = "user-connected"
    peer_id: str = Field(alias="peerId")


class UserDisconnectedMessage(Envelope):
    type: Literal["user-disconnected"] = "user-disconnected"
    peer_id: str = Field(alias="peerId")


class RelayedOffer(Envelope):
    type: Literal["offer"] = "offer"
    offer: Dict[str, Any]
    sender_id: str = Field(alias="from")


class RelayedAnswer(Envelope):
    type: Literal["answer"] = "answer"
    answer: Dict[str, Any]
    sender_id: str = Field(alias="from")


class RelayedIceCandidate(Envelope):
    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: Dict[str, Any]
    sender_id: str = Field(alias="from")


HubMessage = Annotated[
    Union[
        ConnectedMessage,
        UserConnectedMessage,
        UserDisconnectedMessage,
        RelayedOffer,
        RelayedAnswer,
        RelayedIceCandidate,
    ],
    Field(discriminator="type"),
]
hub_message_adapter = TypeAdapter(HubMessage)


def relayed_message(kind: str, sender_id: str, payload: Dict[str, Any]) -> Envelope:
    """Build the Hub -> client envelope for a unicast kind."""
    if kind == "offer":
        return RelayedOffer(offer=payload, sender_id=sender_id)
    if kind == "answer":
        return RelayedAnswer(answer=payload, sender_id=sender_id)
    if kind == "ice-candidate":
        return RelayedIceCandidate(candidate=payload, sender_id=sender_id)
    raise ValueError(f"Not a relay kind: {kind}")
