import asyncio
import logging
from typing import Any, Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp

from rendezvous.errors import MediaAcquisitionError, NegotiationError
from .base import LocalMedia, MediaSource, PeerConnection, PeerConnectionFactory

logger = logging.getLogger(__name__)


def build_configuration(ice_servers: List[Dict[str, Any]]) -> RTCConfiguration:
    return RTCConfiguration([
        RTCIceServer(
            urls=server["urls"],
            username=server.get("username"),
            credential=server.get("credential"),
        )
        for server in ice_servers
    ])


def _describe(description: Optional[RTCSessionDescription]) -> Optional[Dict[str, Any]]:
    if description is None:
        return None
    return {"sdp": description.sdp, "type": description.type}


class AiortcPeerConnection(PeerConnection):
    """RTCPeerConnection behind the agent's dict-based interface.

    aiortc finishes ICE gathering inside setLocalDescription and puts every
    local candidate into the SDP, so it never trickles candidates and
    ``on_local_candidate`` is not called. Remote trickled candidates are
    still accepted.
    """

    def __init__(self, configuration: RTCConfiguration, events: Any):
        self._pc = RTCPeerConnection(configuration)

        @self._pc.on("track")
        async def on_track(track):
            logger.info(f"Received remote track: {track.kind}")
            await events.on_remote_track(self, track)

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange():
            await events.on_connection_state(self, self._pc.connectionState)

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    @property
    def local_description(self) -> Optional[Dict[str, Any]]:
        return _describe(self._pc.localDescription)

    @property
    def remote_description(self) -> Optional[Dict[str, Any]]:
        return _describe(self._pc.remoteDescription)

    def add_track(self, track: Any) -> None:
        logger.info(f"Adding track to peer connection: {track.kind}")
        self._pc.addTrack(track)

    async def create_offer(self) -> Dict[str, Any]:
        try:
            return _describe(await self._pc.createOffer())
        except Exception as e:
            raise NegotiationError(f"createOffer failed: {e}") from e

    async def create_answer(self) -> Dict[str, Any]:
        try:
            return _describe(await self._pc.createAnswer())
        except Exception as e:
            raise NegotiationError(f"createAnswer failed: {e}") from e

    async def set_local_description(self, description: Dict[str, Any]) -> None:
        try:
            await self._pc.setLocalDescription(RTCSessionDescription(sdp=description["sdp"], type=description["type"]))
        except Exception as e:
            raise NegotiationError(f"setLocalDescription failed: {e}") from e

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        try:
            await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description["sdp"], type=description["type"]))
        except Exception as e:
            raise NegotiationError(f"setRemoteDescription failed: {e}") from e

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        value = candidate.get("candidate") or ""
        if not value:
            # end-of-candidates marker
            return
        if value.startswith("candidate:"):
            value = value[len("candidate:"):]
        try:
            ice = candidate_from_sdp(value)
            ice.sdpMid = candidate.get("sdpMid")
            ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
            await self._pc.addIceCandidate(ice)
        except Exception as e:
            raise NegotiationError(f"addIceCandidate failed: {e}") from e

    async def close(self) -> None:
        await self._pc.close()


class AiortcPeerConnectionFactory(PeerConnectionFactory):
    def __init__(self, ice_servers: List[Dict[str, Any]]):
        self.configuration = build_configuration(ice_servers)

    def create(self, events: Any) -> PeerConnection:
        logger.info("Creating peer connection...")
        return AiortcPeerConnection(self.configuration, events)


class MediaPlayerSource(MediaSource):
    """Capture devices opened through aiortc's MediaPlayer (ffmpeg/PyAV).

    On Linux a webcam is typically ``video="/dev/video0", video_format="v4l2"``
    and a microphone ``audio="default", audio_format="pulse"``. A media file
    passed as ``video`` supplies both tracks.
    """

    def __init__(
        self,
        video: Optional[str] = None,
        audio: Optional[str] = None,
        video_format: Optional[str] = None,
        audio_format: Optional[str] = None,
        options: Optional[Dict[str, str]] = None,
    ):
        self.video = video
        self.audio = audio
        self.video_format = video_format
        self.audio_format = audio_format
        self.options = options or {}

    async def acquire(self) -> LocalMedia:
        tracks = []
        try:
            if self.video:
                player = await asyncio.to_thread(
                    MediaPlayer, self.video, format=self.video_format, options=self.options
                )
                tracks.extend(t for t in (player.video, None if self.audio else player.audio) if t is not None)
            if self.audio:
                player = await asyncio.to_thread(MediaPlayer, self.audio, format=self.audio_format)
                if player.audio is not None:
                    tracks.append(player.audio)
        except Exception as e:
            LocalMedia(tracks).stop()
            raise MediaAcquisitionError(str(e)) from e

        if not tracks:
            raise MediaAcquisitionError("No camera or microphone track available")
        return LocalMedia(tracks)
