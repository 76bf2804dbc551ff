"""로컬 미디어 획득 및 on/off 토글

RoomSession은 트랙의 enabled 플래그만 토글하며, 세션 도중 재획득하거나 중지하지 않습니다.
비활성화된 트랙은 원본 프레임 대신 무음/검은 화면 프레임을 전송합니다.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import numpy as np
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from av import AudioFrame, VideoFrame
from av.error import FFmpegError

from roomcall.core.exceptions import MediaAccessDenied

logger = logging.getLogger(__name__)


def silence_like(frame: AudioFrame) -> AudioFrame:
    """같은 형식의 무음 오디오 프레임"""
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    silent.time_base = frame.time_base
    return silent


def black_like(frame: VideoFrame) -> VideoFrame:
    """같은 크기의 검은 비디오 프레임"""
    black = VideoFrame.from_ndarray(
        np.zeros((frame.height, frame.width, 3), dtype=np.uint8),
        format="rgb24",
    )
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


class ToggleableTrack(MediaStreamTrack):
    """enabled 플래그를 가진 로컬 트랙 래퍼"""

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = True

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            return silence_like(frame)
        return black_like(frame)

    def stop(self) -> None:
        super().stop()
        self.source.stop()


@dataclass
class LocalMedia:
    """RoomSession이 소유하는 로컬 트랙"""

    audio: ToggleableTrack | None = None
    video: ToggleableTrack | None = None

    @property
    def tracks(self) -> list[ToggleableTrack]:
        return [track for track in (self.audio, self.video) if track is not None]

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


class MediaCapture(Protocol):
    """미디어 획득 collaborator"""

    async def acquire(self) -> LocalMedia:
        """Raises: MediaAccessDenied"""
        ...


class PlayerMediaCapture:
    """aiortc MediaPlayer 기반 장치/파일 캡처

    Usage:
        PlayerMediaCapture(video="/dev/video0", video_format="v4l2",
                           audio="default", audio_format="pulse")
    """

    def __init__(
        self,
        audio: str | None = None,
        video: str | None = None,
        audio_format: str | None = None,
        video_format: str | None = None,
        video_options: dict[str, str] | None = None,
    ):
        self.audio = audio
        self.video = video
        self.audio_format = audio_format
        self.video_format = video_format
        self.video_options = video_options or {}

    async def acquire(self) -> LocalMedia:
        if not self.audio and not self.video:
            raise MediaAccessDenied("No media source configured")

        # 같은 입력이면 MediaPlayer 하나에서 두 트랙을 모두 사용
        same_source = self.audio == self.video and self.audio_format == self.video_format

        try:
            video_player = None
            audio_player = None
            if self.video:
                video_player = await asyncio.to_thread(
                    MediaPlayer, self.video, format=self.video_format, options=self.video_options
                )
            if self.audio:
                audio_player = video_player if same_source else await asyncio.to_thread(
                    MediaPlayer, self.audio, format=self.audio_format
                )
        except (OSError, FFmpegError) as e:
            raise MediaAccessDenied(f"Cannot open media source: {e}") from e

        media = LocalMedia(
            audio=ToggleableTrack(audio_player.audio) if audio_player and audio_player.audio else None,
            video=ToggleableTrack(video_player.video) if video_player and video_player.video else None,
        )
        if not media.tracks:
            raise MediaAccessDenied("Media source has no audio or video stream")

        logger.info(f"[Media] Acquired tracks: {[track.kind for track in media.tracks]}")
        return media
