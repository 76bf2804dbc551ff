"""offer/answer 협상 상태 머신

상태 전이:
- offerer:  IDLE → OFFER_SENT → STABLE
- answerer: IDLE → OFFER_RECEIVED → STABLE (transport connected 시점)

한 룸에는 상대 참여자 1명만 가정합니다 (remote_id 고정).
glare(양쪽 동시 offer)는 participant id가 사전순으로 작은 쪽이 offerer로 남습니다.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Iterable

from aiortc import MediaStreamTrack

from roomcall.core.exceptions import MalformedCandidate, PublishFailed, TransportFailed
from roomcall.core.telemetry import record_metric
from roomcall.schemas.signaling import (
    Answer,
    CandidateAdd,
    IceCandidate,
    NegotiationState,
    Offer,
    SignalingMessage,
)
from roomcall.services.signaling.candidate_buffer import CandidateBuffer
from roomcall.services.signaling.transport import TransportFactory, TransportSession

logger = logging.getLogger(__name__)

SendFn = Callable[[SignalingMessage], Awaitable[None]]


class NegotiationController:
    """1:1 세션의 offer/answer 협상 및 TransportSession 소유자"""

    def __init__(
        self,
        participant_id: str,
        send: SendFn,
        transport_factory: TransportFactory,
        local_tracks: Callable[[], Iterable[MediaStreamTrack]] = tuple,
        on_transport: Callable[[TransportSession], None] | None = None,
    ):
        """
        Args:
            participant_id: 로컬 참여자 ID
            send: outbound 메시지 발행 함수 (PublishFailed 발생 가능)
            transport_factory: 협상 시도마다 새 TransportSession 생성
            local_tracks: transport에 붙일 로컬 트랙 (읽기/첨부 전용)
            on_transport: 새 transport 생성 시 호출 (상태 모니터 바인딩용)
        """
        self.participant_id = participant_id
        self.state = NegotiationState.IDLE
        self.remote_id: str | None = None
        self.transport: TransportSession | None = None
        self.buffer = CandidateBuffer()

        self._send = send
        self._transport_factory = transport_factory
        self._local_tracks = local_tracks
        self._on_transport = on_transport
        self._remote_applied = False
        self._started_at: float | None = None
        self._closed = False

    @property
    def has_remote_description(self) -> bool:
        return self._remote_applied

    # ===== 트리거 =====

    async def handle_peer_joined(self, peer_id: str) -> None:
        """다른 참여자의 입장을 관찰한 쪽이 offer를 시작"""
        if self.state == NegotiationState.IDLE:
            await self.start_offer(peer_id)
            return

        if peer_id == self.remote_id:
            # 같은 상대가 다시 입장 (새로고침 등) → 이전 세션 폐기 후 재협상
            logger.info(f"[Negotiation] Peer {peer_id} re-joined, renegotiating")
            await self.reset()
            await self.start_offer(peer_id)
            return

        logger.warning(
            f"[Negotiation] Ignoring join from {peer_id}: already negotiating with {self.remote_id}"
        )

    async def start_offer(self, peer_id: str) -> bool:
        """IDLE → OFFER_SENT

        Returns:
            offer를 생성했으면 True

        Raises:
            TransportFailed: offer 생성 실패 (transport 폐기 후 IDLE 복귀)
        """
        if self._closed or self.state != NegotiationState.IDLE:
            logger.warning(f"[Negotiation] Cannot start offer in state {self.state.value}")
            return False

        self.remote_id = peer_id
        transport = await self._create_transport()
        try:
            offer = await transport.create_offer()
        except Exception as e:
            await self._abort(transport, "create_offer", e)
            return False
        if self._is_stale(transport):
            return False

        self.state = NegotiationState.OFFER_SENT
        logger.info(f"[Negotiation] Offer created for peer {peer_id}")
        record_metric("offers_total")

        await self._publish(Offer(sender_id=self.participant_id, offer=offer))
        await self._publish_local_candidates(transport)
        return True

    # ===== inbound 메시지 =====

    async def handle_offer(self, message: Offer) -> None:
        """IDLE → OFFER_RECEIVED (glare/재협상 정책 포함)"""
        if message.sender_id == self.participant_id:
            return

        if self.state != NegotiationState.IDLE and message.sender_id != self.remote_id:
            logger.warning(f"[Negotiation] Ignoring offer from third participant {message.sender_id}")
            return

        if self.state == NegotiationState.OFFER_SENT:
            if self.participant_id < message.sender_id:
                logger.info(f"[Negotiation] Glare with {message.sender_id}: keeping offerer role")
                return
            logger.info(f"[Negotiation] Glare with {message.sender_id}: yielding, answering instead")
            await self.reset()

        elif self.state in (NegotiationState.OFFER_RECEIVED, NegotiationState.STABLE):
            logger.info(f"[Negotiation] Renegotiation offer from {message.sender_id}, resetting")
            await self.reset()

        self.remote_id = message.sender_id
        transport = await self._create_transport()
        try:
            await transport.set_remote_description(message.offer)
        except Exception as e:
            await self._abort(transport, "set_remote_description", e)
            return
        if self._is_stale(transport):
            return
        self._remote_applied = True
        await self._drain_candidates()

        try:
            answer = await transport.create_answer()
        except Exception as e:
            await self._abort(transport, "create_answer", e)
            return
        if self._is_stale(transport):
            return

        self.state = NegotiationState.OFFER_RECEIVED
        logger.info(f"[Negotiation] Answer created for peer {message.sender_id}")
        record_metric("answers_total")

        await self._publish(Answer(sender_id=self.participant_id, answer=answer))
        await self._publish_local_candidates(transport)

    async def handle_answer(self, message: Answer) -> None:
        """OFFER_SENT → STABLE"""
        if message.sender_id == self.participant_id:
            return

        if self.state != NegotiationState.OFFER_SENT:
            logger.warning(f"[Negotiation] Unexpected answer in state {self.state.value}")
            return
        if message.sender_id != self.remote_id:
            logger.warning(f"[Negotiation] Ignoring answer from {message.sender_id}, expected {self.remote_id}")
            return

        transport = self.transport
        try:
            await transport.set_remote_description(message.answer)
        except Exception as e:
            await self._abort(transport, "set_remote_description", e)
            return
        if self._is_stale(transport):
            return
        self._remote_applied = True
        await self._drain_candidates()

        self._mark_stable()

    async def handle_candidate(self, message: CandidateAdd) -> None:
        """remote description 적용 전이면 버퍼링, 이후면 즉시 적용"""
        if message.sender_id == self.participant_id:
            return

        if self.remote_id is not None and message.sender_id != self.remote_id:
            logger.warning(f"[Negotiation] Ignoring candidate from {message.sender_id}")
            return

        if self.transport is not None and self._remote_applied:
            await self._apply_candidate(message.candidate)
            return

        self.buffer.append(message.candidate)
        record_metric("candidates_buffered_total")

    # ===== 재협상 / 종료 =====

    async def reset(self) -> None:
        """transport 폐기, 버퍼 비움, IDLE로 복귀"""
        transport, self.transport = self.transport, None
        self.buffer.clear()
        self.state = NegotiationState.IDLE
        self.remote_id = None
        self._remote_applied = False
        self._started_at = None

        if transport is not None:
            await self._close_transport(transport)

    async def close(self) -> None:
        """룸 퇴장 시 호출, 이후 결과는 모두 무시"""
        self._closed = True
        await self.reset()

    # ===== 내부 =====

    async def _create_transport(self) -> TransportSession:
        """새 협상 시도용 transport 생성 (남아 있는 이전 transport는 닫음)"""
        transport = self._transport_factory()
        for track in self._local_tracks():
            transport.add_track(track)
        transport.on("connectionstatechange", self._on_connection_state_change)

        previous, self.transport = self.transport, transport
        self._remote_applied = False
        self._started_at = time.monotonic()

        if self._on_transport is not None:
            self._on_transport(transport)

        # 닫는 동안 close()가 호출되면 새 transport도 함께 정리됨
        if previous is not None:
            await self._close_transport(previous)
        return transport

    async def _close_transport(self, transport: TransportSession) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"[Negotiation] Failed to close transport: {e}")

    async def _abort(self, transport: TransportSession, step: str, error: Exception) -> None:
        """transport 단계 실패 시 협상 시도를 폐기하고 TransportFailed로 보고

        이미 교체/종료된 transport의 실패는 무시합니다.
        """
        if self._is_stale(transport):
            return

        peer_id = self.remote_id
        logger.warning(f"[Negotiation] {step} failed for peer {peer_id}: {error}")
        await self.reset()
        raise TransportFailed(f"{step} failed: {error}", peer_id=peer_id, step=step) from error

    def _is_stale(self, transport: TransportSession) -> bool:
        """await 이후 퇴장/재협상으로 transport가 교체되었는지 확인"""
        if self._closed or transport is not self.transport:
            logger.info("[Negotiation] Dropping result of a replaced or closed transport")
            return True
        return False

    def _on_connection_state_change(self, state: str) -> None:
        # answerer는 실제 연결 시점에 stable로 간주
        if state == "connected" and self.state == NegotiationState.OFFER_RECEIVED:
            self._mark_stable()

    def _mark_stable(self) -> None:
        self.state = NegotiationState.STABLE
        if self._started_at is not None:
            record_metric("time_to_stable", time.monotonic() - self._started_at)
        logger.info(f"[Negotiation] Stable with peer {self.remote_id}")

    async def _drain_candidates(self) -> None:
        pending = self.buffer.drain()
        if pending:
            logger.info(f"[Negotiation] Applying {len(pending)} buffered candidates")
        for candidate in pending:
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: IceCandidate) -> None:
        try:
            await self.transport.add_ice_candidate(candidate)
        except MalformedCandidate as e:
            logger.warning(f"[Negotiation] Rejected candidate: {e.message}")
            record_metric("candidate_errors_total")

    async def _publish(self, message: SignalingMessage) -> None:
        try:
            await self._send(message)
        except PublishFailed as e:
            logger.warning(f"[Negotiation] Failed to publish {message.event.value}: {e.message}")
            record_metric("publish_failures_total")

    async def _publish_local_candidates(self, transport: TransportSession) -> None:
        for candidate in transport.local_candidates():
            if self._is_stale(transport):
                return
            await self._publish(CandidateAdd(sender_id=self.participant_id, candidate=candidate))
