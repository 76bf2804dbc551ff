"""inbound 시그널링 메시지 핸들러 - Strategy Pattern 구현

모든 수신 메시지는 dispatch_message를 거쳐 NegotiationController 전이 함수로 전달됩니다.
"""

import logging
from typing import Protocol

from roomcall.schemas.signaling import (
    Answer,
    CandidateAdd,
    Offer,
    PresenceAnnounce,
    SignalingEvent,
    SignalingMessage,
)
from roomcall.services.signaling.negotiation import NegotiationController

logger = logging.getLogger(__name__)


class MessageHandler(Protocol):
    """메시지 핸들러 프로토콜"""

    async def handle(self, controller: NegotiationController, message: SignalingMessage) -> None:
        """메시지 처리

        Args:
            controller: 룸 세션의 협상 컨트롤러
            message: 수신 메시지 (self-echo는 이미 제거됨)
        """
        ...


class PresenceHandler:
    """user-joined: 상대 입장을 관찰한 쪽이 offerer"""

    async def handle(self, controller: NegotiationController, message: PresenceAnnounce) -> None:
        logger.info(f"Participant {message.sender_id} joined")
        await controller.handle_peer_joined(message.sender_id)


class OfferHandler:
    """offer 수신"""

    async def handle(self, controller: NegotiationController, message: Offer) -> None:
        logger.debug(f"Offer from {message.sender_id}")
        await controller.handle_offer(message)


class AnswerHandler:
    """answer 수신"""

    async def handle(self, controller: NegotiationController, message: Answer) -> None:
        logger.debug(f"Answer from {message.sender_id}")
        await controller.handle_answer(message)


class CandidateHandler:
    """ice-candidate 수신"""

    async def handle(self, controller: NegotiationController, message: CandidateAdd) -> None:
        await controller.handle_candidate(message)


# 핸들러 레지스트리
HANDLERS: dict[SignalingEvent, MessageHandler] = {
    SignalingEvent.USER_JOINED: PresenceHandler(),
    SignalingEvent.OFFER: OfferHandler(),
    SignalingEvent.ANSWER: AnswerHandler(),
    SignalingEvent.ICE_CANDIDATE: CandidateHandler(),
}


async def dispatch_message(
    controller: NegotiationController,
    message: SignalingMessage,
) -> bool:
    """메시지 타입에 따라 적절한 핸들러로 디스패치

    Returns:
        처리했으면 True, self-echo 등으로 버렸으면 False
    """
    # self-echo: 자신이 보낸 메시지는 상태 전이에 사용하지 않음
    if message.sender_id == controller.participant_id:
        return False

    handler = HANDLERS.get(message.event)
    if handler is None:
        logger.warning(f"Unknown message type: {message.event}")
        return False

    await handler.handle(controller, message)
    return True
