"""시그널링 코어 예외 정의

에러 전파 정책:
- AuthDenied: 룸 입장 자체를 중단 (호출자에게 전파, 재시도 없음)
- MediaAccessDenied: 로컬 미디어 없이 계속 진행 (media-denied 상태)
- PublishFailed / MalformedCandidate: 메시지 단위 에러, 로깅 후 흡수
- TransportFailed: disconnected로 보고 후 재연결 정책 적용 (협상 단계 실패 포함)
"""


class RoomCallError(Exception):
    """roomcall 기본 에러"""

    def __init__(self, message: str = "", **context):
        self.message = message
        self.context = context
        super().__init__(message)


class AuthDenied(RoomCallError):
    """채널 구독 권한 거부"""


class MediaAccessDenied(RoomCallError):
    """로컬 카메라/마이크 획득 실패"""


class PublishFailed(RoomCallError):
    """시그널링 메시지 발행 실패"""


class MalformedCandidate(RoomCallError):
    """transport가 거부한 ICE candidate"""


class TransportFailed(RoomCallError):
    """P2P 연결이 failed/disconnected로 전이"""
