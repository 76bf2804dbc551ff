"""pytest 설정 및 공유 fixture

테스트 인프라:
- 테스트 설정
- 인메모리 relay (FakeRelayHub / FakeRelay)
- Fake TransportSession (SDP/candidate 기록)
- Fake 미디어 캡처 (aiortc 기본 트랙 사용)
- FastAPI AsyncClient
"""

import asyncio
import copy
import itertools
import time
from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack
from httpx import ASGITransport, AsyncClient
from pyee.asyncio import AsyncIOEventEmitter

from roomcall.core.config import Settings, get_settings
from roomcall.core.exceptions import MalformedCandidate, MediaAccessDenied, PublishFailed, TransportFailed
from roomcall.core.security import verify_channel_token
from roomcall.schemas.signaling import IceCandidate, SessionDescription
from roomcall.services.media import LocalMedia, ToggleableTrack
from roomcall.services.signaling.channel import LocalChannelAuthorizer


# ===== 테스트 설정 =====


@pytest.fixture
def test_settings() -> Settings:
    """테스트용 설정"""
    return Settings(
        app_env="test",
        debug=True,
        redis_url="redis://localhost:6379/1",  # 테스트용 DB 1 사용
        channel_secret_key="test-secret-key",
        max_reconnect_attempts=1,
        reconnect_backoff_seconds=0.01,
    )


# ===== 인메모리 relay =====


class FakeRelayHub:
    """채널별 구독자 큐로 메시지를 전달하는 인메모리 relay (발신자별 순서 보존)"""

    def __init__(self):
        self.subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self.published: list[tuple[str, str, dict]] = []
        self.fail_publish = False
        self._socket_ids = itertools.count(1)

    def next_socket_id(self) -> str:
        return f"{next(self._socket_ids)}.42"

    def events_of(self, event: str) -> list[dict]:
        return [data for _, name, data in self.published if name == event]


class FakeRelay:
    """FakeRelayHub에 연결된 RelayTransport"""

    def __init__(self, hub: FakeRelayHub, settings: Settings):
        self.hub = hub
        self.settings = settings
        self.socket_id: str | None = None
        self.queue: asyncio.Queue = asyncio.Queue()
        self.connect_count = 0
        self.unsubscribe_count = 0
        self.close_count = 0

    async def connect(self) -> str:
        self.connect_count += 1
        self.socket_id = self.hub.next_socket_id()
        return self.socket_id

    async def subscribe(self, channel: str, auth: str) -> None:
        verify_channel_token(auth, self.socket_id, channel, self.settings)
        self.hub.subscribers[channel].append(self.queue)

    async def events(self):
        while True:
            yield await self.queue.get()

    async def publish(self, channel: str, event: str, data: dict) -> None:
        if self.hub.fail_publish:
            raise PublishFailed("relay unavailable", channel=channel, event=event)
        self.hub.published.append((channel, event, data))
        for queue in self.hub.subscribers[channel]:
            queue.put_nowait((event, copy.deepcopy(data)))

    async def unsubscribe(self, channel: str) -> None:
        self.unsubscribe_count += 1
        if self.queue in self.hub.subscribers[channel]:
            self.hub.subscribers[channel].remove(self.queue)

    async def close(self) -> None:
        self.close_count += 1


@pytest.fixture
def relay_hub() -> FakeRelayHub:
    return FakeRelayHub()


@pytest.fixture
def make_relay(relay_hub: FakeRelayHub, test_settings: Settings) -> Callable[[], FakeRelay]:
    return lambda: FakeRelay(relay_hub, test_settings)


@pytest.fixture
def authorizer(test_settings: Settings) -> LocalChannelAuthorizer:
    return LocalChannelAuthorizer(test_settings)


# ===== Fake transport =====


class FakeTransport(AsyncIOEventEmitter):
    """SDP 교환과 candidate 적용을 기록하는 TransportSession"""

    def __init__(self, name: str, local_candidates: list[str] | None = None):
        super().__init__()
        self.name = name
        self.connection_state = "new"
        self.tracks: list = []
        self.local: SessionDescription | None = None
        self.remote: SessionDescription | None = None
        self.applied: list[str] = []
        self.close_count = 0
        self.gate: asyncio.Event | None = None
        self.fail_on: str | None = None  # 이 단계에서 TransportFailed 발생
        self._local_candidates = local_candidates or []

    def add_track(self, track) -> None:
        self.tracks.append(track)

    async def create_offer(self) -> SessionDescription:
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail("create_offer")
        self.local = SessionDescription(type="offer", sdp=f"v=0 offer from {self.name}")
        return self.local

    async def create_answer(self) -> SessionDescription:
        self._maybe_fail("create_answer")
        assert self.remote is not None, "answer requires a remote offer"
        self.local = SessionDescription(type="answer", sdp=f"v=0 answer from {self.name}")
        return self.local

    async def set_remote_description(self, description: SessionDescription) -> None:
        self._maybe_fail("set_remote_description")
        self.remote = description

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        if candidate.candidate == "bad":
            raise MalformedCandidate("Unparseable candidate", candidate=candidate.candidate)
        self.applied.append(candidate.candidate)

    def local_candidates(self) -> list[IceCandidate]:
        return [
            IceCandidate(candidate=value, sdp_mid="0", sdp_mline_index=0)
            for value in self._local_candidates
        ]

    async def close(self) -> None:
        self.close_count += 1
        self.connection_state = "closed"

    def set_state(self, state: str) -> None:
        self.connection_state = state
        self.emit("connectionstatechange", state)

    def _maybe_fail(self, step: str) -> None:
        if self.fail_on == step:
            raise TransportFailed(f"{step} failed on {self.name}", state=self.connection_state)


class TransportRecorder:
    """생성된 FakeTransport 목록을 보관하는 팩토리"""

    def __init__(self, name: str, local_candidates: list[str] | None = None):
        self.name = name
        self.local_candidates = local_candidates
        self.created: list[FakeTransport] = []
        self.fail_next: str | None = None

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(f"{self.name}-{len(self.created) + 1}", self.local_candidates)
        transport.fail_on, self.fail_next = self.fail_next, None
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


@pytest.fixture
def transport_factory() -> TransportRecorder:
    return TransportRecorder("local", local_candidates=["candidate:1 1 udp 1 10.0.0.1 5000 typ host"])


@pytest.fixture
def make_transport_recorder() -> type[TransportRecorder]:
    return TransportRecorder


# ===== Fake 미디어 =====


class FakeMediaCapture:
    """aiortc 기본 트랙(무음/녹색 화면)을 반환하는 미디어 캡처"""

    def __init__(self, gate: asyncio.Event | None = None):
        self.gate = gate
        self.acquired: list[LocalMedia] = []

    async def acquire(self) -> LocalMedia:
        if self.gate is not None:
            await self.gate.wait()
        media = LocalMedia(
            audio=ToggleableTrack(AudioStreamTrack()),
            video=ToggleableTrack(VideoStreamTrack()),
        )
        self.acquired.append(media)
        return media


class DeniedMediaCapture:
    """권한 거부 미디어 캡처"""

    async def acquire(self) -> LocalMedia:
        raise MediaAccessDenied("Permission denied")


@pytest.fixture
def make_media_capture() -> type[FakeMediaCapture]:
    return FakeMediaCapture


@pytest.fixture
def denied_media() -> DeniedMediaCapture:
    return DeniedMediaCapture()


# ===== 유틸 =====


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    """비동기 조건 대기 헬퍼"""
    return _wait_until


# ===== API =====


@pytest.fixture
def mock_redis():
    """Redis Mock (publish만 사용)"""
    mock = MagicMock()
    mock.publish = AsyncMock(return_value=1)
    return mock


@pytest.fixture
async def async_client(test_settings: Settings, mock_redis) -> AsyncGenerator[AsyncClient, None]:
    """비동기 HTTP 클라이언트 (의존성 오버라이드 포함)"""
    from roomcall.api.dependencies import get_relay_client
    from roomcall.main import app

    async def _override_relay_client():
        return mock_redis

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_relay_client] = _override_relay_client

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
