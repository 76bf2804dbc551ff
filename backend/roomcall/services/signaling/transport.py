"""P2P transport session - aiortc RTCPeerConnection 래퍼

NegotiationController가 사용하는 transport 인터페이스와 aiortc 구현.
ICE 연결 검사, DTLS/SRTP는 aiortc가 처리하며 여기서는 SDP/candidate만 다룹니다.

이벤트:
- "connectionstatechange" (state: str)
- "track" (track: MediaStreamTrack)
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Protocol

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from pyee.asyncio import AsyncIOEventEmitter

from roomcall.core.exceptions import MalformedCandidate, TransportFailed
from roomcall.schemas.signaling import IceCandidate, SessionDescription
from roomcall.utils.ice_parser import ICECandidateParser

logger = logging.getLogger(__name__)


class TransportSession(Protocol):
    """NegotiationController가 소유하는 P2P 세션"""

    connection_state: str

    def on(self, event: str, f: Callable | None = None): ...

    def add_track(self, track: MediaStreamTrack) -> None: ...

    async def create_offer(self) -> SessionDescription:
        """local offer 생성 + local description 적용"""
        ...

    async def create_answer(self) -> SessionDescription:
        """local answer 생성 + local description 적용"""
        ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        """Raises: MalformedCandidate"""
        ...

    def local_candidates(self) -> list[IceCandidate]: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[], TransportSession]


def build_rtc_configuration(ice_servers: Iterable[str]) -> RTCConfiguration:
    """STUN url 목록으로 RTCConfiguration 생성"""
    return RTCConfiguration(iceServers=[RTCIceServer(urls=[url]) for url in ice_servers])


class AiortcTransport(AsyncIOEventEmitter):
    """aiortc RTCPeerConnection 기반 TransportSession"""

    def __init__(self, configuration: RTCConfiguration, gathering_timeout: float = 5.0):
        super().__init__()
        self.gathering_timeout = gathering_timeout
        self.pc = RTCPeerConnection(configuration=configuration)
        logger.info(
            f"[AiortcTransport] Creating RTCPeerConnection with "
            f"{len(configuration.iceServers or [])} ICE servers"
        )

        @self.pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[AiortcTransport] Connection state: {self.pc.connectionState}")
            self.emit("connectionstatechange", self.pc.connectionState)

        @self.pc.on("track")
        def on_track(track):
            logger.info(f"[AiortcTransport] Remote {track.kind} track received")
            self.emit("track", track)

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState

    def add_track(self, track: MediaStreamTrack) -> None:
        self.pc.addTrack(track)

    async def create_offer(self) -> SessionDescription:
        offer = await self.pc.createOffer()
        await self._set_local_description(offer)
        return self._local_description()

    async def create_answer(self) -> SessionDescription:
        answer = await self.pc.createAnswer()
        await self._set_local_description(answer)
        return self._local_description()

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        # 빈 candidate 문자열은 end-of-candidates
        if not candidate.candidate:
            logger.debug("[AiortcTransport] Empty candidate (end-of-candidates)")
            return

        ice_candidate = ICECandidateParser.parse(
            candidate.candidate,
            {"sdpMid": candidate.sdp_mid, "sdpMLineIndex": candidate.sdp_mline_index},
        )
        if ice_candidate is None:
            raise MalformedCandidate("Unparseable candidate", candidate=candidate.candidate[:100])

        try:
            await self.pc.addIceCandidate(ice_candidate)
        except ValueError as e:
            raise MalformedCandidate(str(e), candidate=candidate.candidate[:100]) from e

    def local_candidates(self) -> list[IceCandidate]:
        if self.pc.localDescription is None:
            return []
        return [
            IceCandidate.model_validate(init)
            for init in ICECandidateParser.from_sdp(self.pc.localDescription.sdp)
        ]

    async def close(self) -> None:
        await self.pc.close()
        self.remove_all_listeners()

    async def _set_local_description(self, description: RTCSessionDescription) -> None:
        # aiortc는 setLocalDescription 안에서 ICE gathering을 완료함
        try:
            await asyncio.wait_for(
                self.pc.setLocalDescription(description),
                timeout=self.gathering_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportFailed(
                f"ICE gathering timeout after {self.gathering_timeout}s",
                state=self.pc.iceGatheringState,
            ) from e

    def _local_description(self) -> SessionDescription:
        return SessionDescription(
            type=self.pc.localDescription.type,
            sdp=self.pc.localDescription.sdp,
        )


def aiortc_transport_factory(ice_servers: Iterable[str], gathering_timeout: float = 5.0) -> TransportFactory:
    """설정된 STUN 서버를 사용하는 AiortcTransport 팩토리"""
    configuration = build_rtc_configuration(list(ice_servers))

    def factory() -> TransportSession:
        return AiortcTransport(configuration, gathering_timeout=gathering_timeout)

    return factory
