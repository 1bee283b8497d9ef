import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import websockets
from aiortc.contrib.media import MediaBlackhole

from rendezvous.config import settings
from rendezvous.errors import RendezvousError
from .base import MediaSource, PeerConnectionFactory, SignalingChannel
from .factory import get_media_source, get_peer_factory
from .negotiator import NegotiationAgent, NegotiationState

logger = logging.getLogger(__name__)


class WebSocketSignaling(SignalingChannel):
    def __init__(self, ws):
        self.ws = ws

    async def send(self, message: Dict[str, Any]) -> None:
        await self.ws.send(json.dumps(message))


class RemoteSink:
    """Pulls frames from every remote track so the media pipeline keeps flowing."""

    def __init__(self):
        self.holes: List[MediaBlackhole] = []
        self._tasks: List[asyncio.Task] = []

    def add_track(self, track) -> None:
        hole = MediaBlackhole()
        hole.addTrack(track)
        self.holes.append(hole)
        self._tasks.append(asyncio.ensure_future(hole.start()))

    async def stop(self) -> None:
        for hole in self.holes:
            await hole.stop()
        self.holes.clear()
        self._tasks.clear()


async def run_agent(
    url: str,
    room_id: str,
    media_source: MediaSource,
    peer_factory: PeerConnectionFactory,
    join: bool = False,
) -> NegotiationState:
    """Connect to the Hub, place the call and relay messages until it ends."""
    sink = RemoteSink()
    logger.info(f"Connecting to signaling server {url}")
    async with websockets.connect(url) as ws:
        agent = NegotiationAgent(
            WebSocketSignaling(ws),
            media_source,
            peer_factory,
            on_track=sink.add_track,
        )
        if join:
            await agent.join_call(room_id)
        else:
            await agent.start_call(room_id)

        try:
            async for raw in ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("⚠️  Malformed message from signaling server")
                    continue
                await agent.handle_message(data)
                if agent.state is NegotiationState.ENDED:
                    break
        finally:
            await agent.end_call()
            await sink.stop()
    return agent.state


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Rendezvous negotiation agent")
    parser.add_argument("--room", required=True, help="Room ID shared with the other peer")
    parser.add_argument("--url", default=settings.SIGNAL_URL, help="Signaling server WebSocket URL")
    parser.add_argument("--join", action="store_true", help="Join an existing call instead of starting one")
    parser.add_argument("--video", help="Video device or media file, e.g. /dev/video0")
    parser.add_argument("--video-format", help="ffmpeg input format for --video, e.g. v4l2")
    parser.add_argument("--audio", help="Audio device, e.g. default")
    parser.add_argument("--audio-format", help="ffmpeg input format for --audio, e.g. pulse")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    media_source = get_media_source(
        video=args.video,
        audio=args.audio,
        video_format=args.video_format,
        audio_format=args.audio_format,
    )
    try:
        asyncio.run(run_agent(args.url, args.room, media_source, get_peer_factory(), join=args.join))
    except RendezvousError as e:
        logger.error(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
