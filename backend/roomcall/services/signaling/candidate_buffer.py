"""remote description 적용 전에 도착한 ICE candidate 버퍼"""

import logging

from roomcall.schemas.signaling import IceCandidate

logger = logging.getLogger(__name__)


class CandidateBuffer:
    """도착 순서를 보존하는 candidate 대기열

    remote description이 적용되는 순간 drain()으로 한 번에 비워집니다.
    재협상/종료 시에는 clear()로 버립니다.
    """

    def __init__(self):
        self._pending: list[IceCandidate] = []

    def __len__(self) -> int:
        return len(self._pending)

    def append(self, candidate: IceCandidate) -> None:
        self._pending.append(candidate)
        logger.debug("[CandidateBuffer] Buffered candidate (pending=%d)", len(self._pending))

    def drain(self) -> list[IceCandidate]:
        """대기 중인 candidate를 도착 순서대로 반환하고 버퍼를 비움"""
        drained, self._pending = self._pending, []
        return drained

    def clear(self) -> None:
        if self._pending:
            logger.debug("[CandidateBuffer] Dropping %d pending candidates", len(self._pending))
        self._pending = []
