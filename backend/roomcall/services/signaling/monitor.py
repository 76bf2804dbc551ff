"""transport 연결 상태 → 외부 보고용 ConnectionStatus 변환"""

import logging
from collections.abc import Callable

from roomcall.schemas.signaling import ConnectionStatus
from roomcall.services.signaling.transport import TransportSession

logger = logging.getLogger(__name__)

StatusListener = Callable[[ConnectionStatus], None]

# 나머지 상태(new, closed)는 현재 status를 유지
TRANSPORT_STATE_MAP: dict[str, ConnectionStatus] = {
    "connecting": ConnectionStatus.CONNECTING,
    "connected": ConnectionStatus.CONNECTED,
    "disconnected": ConnectionStatus.DISCONNECTED,
    "failed": ConnectionStatus.DISCONNECTED,
}


class ConnectionStateMonitor:
    """transport 이벤트 기반(level-triggered) 연결 상태 추적

    polling 없이 transport의 connectionstatechange/track 이벤트에만 반응합니다.
    """

    def __init__(self, initial: ConnectionStatus = ConnectionStatus.CONNECTING):
        self.status = initial
        self._listeners: list[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def bind(self, transport: TransportSession) -> None:
        """새 transport의 상태 이벤트 구독"""
        transport.on("connectionstatechange", self.on_transport_state)
        transport.on("track", self.on_remote_track)

    def on_transport_state(self, state: str) -> None:
        status = TRANSPORT_STATE_MAP.get(state)
        if status is not None:
            self.set_status(status)

    def on_remote_track(self, track) -> None:
        self.set_status(ConnectionStatus.CONNECTED)

    def media_ready(self) -> None:
        """로컬 미디어 획득 완료, 상대 입장 대기"""
        if self.status == ConnectionStatus.CONNECTING:
            self.set_status(ConnectionStatus.WAITING_FOR_PEER)

    def media_denied(self) -> None:
        self.set_status(ConnectionStatus.MEDIA_DENIED)

    def set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return

        previous, self.status = self.status, status
        logger.info(f"[ConnectionStateMonitor] {previous.value} → {status.value}")
        for listener in list(self._listeners):
            listener(status)
