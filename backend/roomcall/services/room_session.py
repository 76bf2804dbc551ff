"""룸 방문 단위 세션 - 시그널링 코어 조립

한 RoomSession이 참여자 ID, 로컬 미디어, SignalingChannel, NegotiationController,
ConnectionStateMonitor를 모두 소유하며 leave()에서 정확히 한 번 정리합니다.

Usage:
    async with RoomSession("abcd1234", relay, authorizer, media) as session:
        session.on_status_change(print)
        ...
"""

import asyncio
import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass

from aiortc import MediaStreamTrack

from roomcall.core.config import Settings, get_settings
from roomcall.core.exceptions import (
    AuthDenied,
    MediaAccessDenied,
    PublishFailed,
    RoomCallError,
    TransportFailed,
)
from roomcall.core.telemetry import get_tracer
from roomcall.core.webrtc_config import PARTICIPANT_ID_BYTES, ROOM_ID_PATTERN
from roomcall.schemas.signaling import (
    ConnectionStatus,
    NegotiationState,
    SignalingMessage,
)
from roomcall.services.media import LocalMedia, MediaCapture
from roomcall.services.signaling.channel import ChannelAuthorizer, RelayTransport, SignalingChannel
from roomcall.services.signaling.handlers import dispatch_message
from roomcall.services.signaling.monitor import ConnectionStateMonitor, StatusListener
from roomcall.services.signaling.negotiation import NegotiationController
from roomcall.services.signaling.transport import (
    TransportFactory,
    TransportSession,
    aiortc_transport_factory,
)

logger = logging.getLogger(__name__)

_ROOM_ID_RE = re.compile(ROOM_ID_PATTERN)


def generate_participant_id() -> str:
    """룸 방문 동안만 유효한 로컬 참여자 ID"""
    return secrets.token_hex(PARTICIPANT_ID_BYTES)


@dataclass(frozen=True)
class ReconnectRequest:
    """재연결 시도 (inbound 메시지와 같은 큐에서 직렬 처리)"""
    peer_id: str
    attempt: int


class RoomSession:
    """1:1 통화 룸 세션"""

    def __init__(
        self,
        room_id: str,
        relay: RelayTransport,
        authorizer: ChannelAuthorizer,
        media: MediaCapture | None = None,
        settings: Settings | None = None,
        transport_factory: TransportFactory | None = None,
        participant_id: str | None = None,
    ):
        """
        Args:
            room_id: 룸 ID (URL path segment)
            relay: pub/sub relay 연결
            authorizer: 채널 인가 함수
            media: 로컬 미디어 collaborator (None이면 미디어 없이 참여)
            settings: 설정 (기본값: get_settings())
            transport_factory: TransportSession 팩토리 (기본값: aiortc)
            participant_id: 로컬 참여자 ID (기본값: 랜덤 생성)
        """
        if not _ROOM_ID_RE.match(room_id or ""):
            raise ValueError(f"Invalid room id: {room_id!r}")

        self.settings = settings or get_settings()
        self.room_id = room_id
        self.participant_id = participant_id or generate_participant_id()
        self.local_media: LocalMedia | None = None
        self.channel: SignalingChannel | None = None
        self.monitor = ConnectionStateMonitor()
        self.controller = NegotiationController(
            self.participant_id,
            send=self._publish,
            transport_factory=transport_factory
            or aiortc_transport_factory(
                self.settings.ice_servers, self.settings.ice_gathering_timeout
            ),
            local_tracks=self._local_tracks,
            on_transport=self._bind_transport,
        )

        self._relay = relay
        self._authorizer = authorizer
        self._media = media
        self._inbox: asyncio.Queue[SignalingMessage | ReconnectRequest] = asyncio.Queue()
        self._dispatcher: asyncio.Task | None = None
        self._reconnect_timer: asyncio.Task | None = None
        self._reconnect_attempts = 0
        self._track_listeners: list[Callable[[MediaStreamTrack], None]] = []
        self._teardown: asyncio.Future | None = None
        self._left = False

        self.monitor.add_listener(self._on_status_change)

    # ===== 외부 노출 상태 =====

    @property
    def status(self) -> ConnectionStatus:
        return self.monitor.status

    @property
    def negotiation_state(self) -> NegotiationState:
        return self.controller.state

    @property
    def has_left(self) -> bool:
        return self._left

    @property
    def is_muted(self) -> bool:
        audio = self.local_media.audio if self.local_media else None
        return audio is None or not audio.enabled

    @property
    def is_video_off(self) -> bool:
        video = self.local_media.video if self.local_media else None
        return video is None or not video.enabled

    def on_status_change(self, listener: StatusListener) -> None:
        self.monitor.add_listener(listener)

    def on_remote_track(self, listener: Callable[[MediaStreamTrack], None]) -> None:
        self._track_listeners.append(listener)

    # ===== 입장 =====

    async def join(self) -> "RoomSession":
        """미디어 획득 → 채널 인가/구독 → presence 발행

        어떤 예외든 획득한 미디어, dispatcher, relay 연결을 모두 정리한 후 전파합니다.

        Raises:
            AuthDenied: 채널 인가 거부
        """
        with get_tracer().start_as_current_span("room.join") as span:
            span.set_attribute("room.id", self.room_id)
            span.set_attribute("participant.id", self.participant_id)

            await self._acquire_media()
            if self._left:
                return self

            self.channel = SignalingChannel(
                self._relay, self._authorizer, self.room_id, self.participant_id
            )
            self.channel.on_message(self._enqueue)
            self._dispatcher = asyncio.create_task(self._dispatch_loop())

            try:
                await self.channel.open()
            except AuthDenied as e:
                logger.error(f"[RoomSession] Room {self.room_id} denied: {e.message}")
                await self.leave()
                raise
            except BaseException as e:
                logger.error(f"[RoomSession] Failed to join room {self.room_id}: {e!r}")
                await self.leave()
                raise

            logger.info(f"[RoomSession] Joined room {self.room_id} as {self.participant_id}")
            return self

    async def _acquire_media(self) -> None:
        if self._media is None:
            self.monitor.media_denied()
            return

        try:
            media = await self._media.acquire()
        except MediaAccessDenied as e:
            logger.warning(f"[RoomSession] Continuing without local media: {e.message}")
            self.monitor.media_denied()
            return

        # 획득 도중 leave()가 호출되었다면 결과를 버림
        if self._left:
            media.stop()
            return

        self.local_media = media
        self.monitor.media_ready()

    # ===== 미디어 토글 =====

    def toggle_mute(self) -> bool:
        """오디오 트랙 enabled 토글

        Returns:
            토글 후 음소거 여부
        """
        if self.local_media and self.local_media.audio:
            self.local_media.audio.enabled = not self.local_media.audio.enabled
        return self.is_muted

    def toggle_video(self) -> bool:
        """비디오 트랙 enabled 토글

        Returns:
            토글 후 비디오 꺼짐 여부
        """
        if self.local_media and self.local_media.video:
            self.local_media.video.enabled = not self.local_media.video.enabled
        return self.is_video_off

    # ===== 퇴장 =====

    async def leave(self) -> None:
        """transport, 채널, 로컬 트랙 정리 (동시/반복 호출에도 정확히 1회)"""
        if self._teardown is None:
            self._left = True
            self._teardown = asyncio.ensure_future(self._release())
        await asyncio.shield(self._teardown)

    async def _release(self) -> None:
        for task in (self._reconnect_timer, self._dispatcher):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        try:
            await self.controller.close()
        except Exception as e:
            logger.warning(f"[RoomSession] Transport teardown failed: {e}")

        if self.channel is not None:
            try:
                await self.channel.close()
            except Exception as e:
                logger.warning(f"[RoomSession] Channel teardown failed: {e}")

        if self.local_media is not None:
            self.local_media.stop()

        logger.info(f"[RoomSession] Left room {self.room_id}")

    async def __aenter__(self) -> "RoomSession":
        return await self.join()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.leave()

    # ===== message bus =====

    def _enqueue(self, item: SignalingMessage | ReconnectRequest) -> None:
        if not self._left:
            self._inbox.put_nowait(item)

    async def _dispatch_loop(self) -> None:
        """inbound 메시지를 한 번에 하나씩 컨트롤러에 전달"""
        while True:
            item = await self._inbox.get()
            try:
                if isinstance(item, ReconnectRequest):
                    await self._reconnect(item)
                else:
                    await dispatch_message(self.controller, item)
            except TransportFailed as e:
                self._on_transport_failed(e)
            except RoomCallError as e:
                logger.warning(f"[RoomSession] Message handling failed: {e}")
            except Exception:
                logger.exception("[RoomSession] Unexpected error while handling message")

    async def _publish(self, message: SignalingMessage) -> None:
        if self._left or self.channel is None:
            raise PublishFailed("Session already left", event=message.event.value)
        await self.channel.publish(message)

    # ===== transport 바인딩 =====

    def _local_tracks(self) -> list[MediaStreamTrack]:
        return self.local_media.tracks if self.local_media else []

    def _bind_transport(self, transport: TransportSession) -> None:
        self.monitor.bind(transport)
        transport.on("track", self._on_remote_track)

    def _on_remote_track(self, track: MediaStreamTrack) -> None:
        for listener in list(self._track_listeners):
            listener(track)

    # ===== 재연결 정책 =====

    def _on_status_change(self, status: ConnectionStatus) -> None:
        if status == ConnectionStatus.CONNECTED:
            self._reconnect_attempts = 0
            return

        if status == ConnectionStatus.DISCONNECTED:
            self._maybe_reconnect(self.controller.remote_id)

    def _on_transport_failed(self, error: TransportFailed) -> None:
        """협상 단계에서 transport가 실패하면 disconnected로 보고하고 재연결 정책 적용"""
        logger.warning(f"[RoomSession] Transport failed: {error.message}")
        self.monitor.set_status(ConnectionStatus.DISCONNECTED)
        # 실패한 시도는 이미 폐기되어 controller.remote_id가 비어 있음
        self._maybe_reconnect(error.context.get("peer_id") or self.controller.remote_id)

    def _maybe_reconnect(self, peer_id: str | None) -> None:
        if self._left:
            return
        if peer_id is None or self.participant_id > peer_id:
            # 재연결은 participant id가 작은 쪽만 시도 (상대는 재협상 offer를 수락)
            return
        if self._reconnect_attempts >= self.settings.max_reconnect_attempts:
            logger.warning(f"[RoomSession] Giving up reconnect after {self._reconnect_attempts} attempts")
            return
        if self._reconnect_timer is not None and not self._reconnect_timer.done():
            return

        delay = self.settings.reconnect_backoff_seconds * (2 ** self._reconnect_attempts)
        self._reconnect_attempts += 1
        request = ReconnectRequest(peer_id=peer_id, attempt=self._reconnect_attempts)
        self._reconnect_timer = asyncio.ensure_future(self._schedule_reconnect(request, delay))

    async def _schedule_reconnect(self, request: ReconnectRequest, delay: float) -> None:
        logger.info(f"[RoomSession] Reconnect attempt {request.attempt} in {delay:.1f}s")
        await asyncio.sleep(delay)
        self._enqueue(request)

    async def _reconnect(self, request: ReconnectRequest) -> None:
        if self.status != ConnectionStatus.DISCONNECTED:
            return
        await self.controller.reset()
        self.monitor.set_status(ConnectionStatus.CONNECTING)
        await self.controller.start_offer(request.peer_id)
