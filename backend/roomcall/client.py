"""룸 참여 CLI 클라이언트

Usage:
    cd backend
    python -m roomcall.client abcd1234 --video /dev/video0 --video-format v4l2
"""

import argparse
import asyncio
import logging

import httpx
from aiortc.contrib.media import MediaBlackhole

from roomcall.core.config import get_settings
from roomcall.core.exceptions import AuthDenied
from roomcall.core.telemetry import setup_telemetry
from roomcall.services.media import PlayerMediaCapture
from roomcall.services.room_session import RoomSession
from roomcall.services.signaling.channel import HttpChannelAuthorizer, RedisRelay

logger = logging.getLogger("roomcall.client")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Join a roomcall room")
    parser.add_argument("room_id", help="Room identifier (URL path segment)")
    parser.add_argument("--audio", help="Audio input (file or device)")
    parser.add_argument("--audio-format", help="FFmpeg input format for audio, e.g. pulse")
    parser.add_argument("--video", help="Video input (file or device)")
    parser.add_argument("--video-format", help="FFmpeg input format for video, e.g. v4l2")
    parser.add_argument("--relay-api", help="Relay API base url (default: RELAY_API_URL)")
    parser.add_argument("--telemetry", action="store_true", help="Export OpenTelemetry metrics")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


class RemoteTrackSink:
    """원격 트랙은 재생하지 않고 소비만 함"""

    def __init__(self):
        self._sinks: list[MediaBlackhole] = []
        self._starts: list[asyncio.Task] = []

    def consume(self, track) -> None:
        sink = MediaBlackhole()
        sink.addTrack(track)
        self._sinks.append(sink)
        self._starts.append(asyncio.ensure_future(sink.start()))

    async def close(self) -> None:
        results = await asyncio.gather(*self._starts, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"Remote track sink failed: {result!r}")

        for sink in self._sinks:
            await sink.stop()


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    sink = RemoteTrackSink()

    async with httpx.AsyncClient(
        base_url=args.relay_api or settings.relay_api_url,
        timeout=httpx.Timeout(10.0),
    ) as http_client:
        session = RoomSession(
            args.room_id,
            relay=RedisRelay(settings=settings, http_client=http_client),
            authorizer=HttpChannelAuthorizer(http_client),
            media=PlayerMediaCapture(
                audio=args.audio,
                video=args.video,
                audio_format=args.audio_format,
                video_format=args.video_format,
            ),
            settings=settings,
        )
        session.on_status_change(lambda status: logger.info(f"Status: {status.value}"))
        session.on_remote_track(sink.consume)

        try:
            async with session:
                # Ctrl-C로 종료할 때까지 대기
                await asyncio.Event().wait()
        except AuthDenied as e:
            logger.error(f"Cannot join room {args.room_id}: {e.message}")
            return 1
        finally:
            await sink.close()

    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    # 로깅 설정
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.telemetry:
        setup_telemetry("roomcall-client", "0.1.0")

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
