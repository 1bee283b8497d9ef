from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class LocalMedia:
    tracks: List[Any] = field(default_factory=list)

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


class MediaSource(ABC):
    @abstractmethod
    async def acquire(self) -> LocalMedia:
        """Open camera and microphone.

        Raises MediaAcquisitionError when permission is denied or a device
        is busy or missing.
        """
        raise NotImplementedError


class SignalingChannel(ABC):
    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Push one JSON message to the Hub."""
        raise NotImplementedError


class PeerConnection(ABC):
    """Session descriptions and candidates are plain dicts in browser wire format.

    Every description or candidate operation raises NegotiationError on failure.
    """

    @property
    @abstractmethod
    def connection_state(self) -> str: ...

    @property
    @abstractmethod
    def local_description(self) -> Optional[Dict[str, Any]]: ...

    @property
    @abstractmethod
    def remote_description(self) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def add_track(self, track: Any) -> None: ...

    @abstractmethod
    async def create_offer(self) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_answer(self) -> Dict[str, Any]: ...

    @abstractmethod
    async def set_local_description(self, description: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def set_remote_description(self, description: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


class PeerConnectionFactory(ABC):
    @abstractmethod
    def create(self, events: Any) -> PeerConnection:
        """Build a peer connection reporting to ``events``.

        ``events`` exposes the coroutines ``on_remote_track(pc, track)``,
        ``on_local_candidate(pc, candidate)`` and
        ``on_connection_state(pc, state)``.
        """
        raise NotImplementedError
