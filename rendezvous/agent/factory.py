from typing import Optional

from .base import MediaSource, PeerConnectionFactory
from rendezvous.config import settings


def get_peer_factory(ice_servers: Optional[list] = None) -> PeerConnectionFactory:
    from .aiortc_adapter import AiortcPeerConnectionFactory  # lazy import
    return AiortcPeerConnectionFactory(ice_servers if ice_servers is not None else settings.ice_servers())


def get_media_source(
    video: Optional[str] = None,
    audio: Optional[str] = None,
    video_format: Optional[str] = None,
    audio_format: Optional[str] = None,
) -> MediaSource:
    from .aiortc_adapter import MediaPlayerSource  # lazy import
    return MediaPlayerSource(video=video, audio=audio, video_format=video_format, audio_format=audio_format)
