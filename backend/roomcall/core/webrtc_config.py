"""WebRTC 관련 설정"""

# ICE 서버 설정 (STUN만 사용)
# 같은 네트워크 또는 NAT 타입이 호환되는 환경에서 P2P 연결 가능
# TURN 서버 없이 동작하므로 제한적인 NAT(Symmetric NAT) 환경에서는 연결 실패 가능
DEFAULT_STUN_SERVERS = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
)

# 룸별 private 채널 이름 규칙: private-room-<roomId>
ROOM_CHANNEL_PREFIX = "private-room-"

# 룸 ID 규칙 (URL path segment)
ROOM_ID_LENGTH = 8
ROOM_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"

# 참여자 ID 길이 (hex 문자 수)
PARTICIPANT_ID_BYTES = 8
