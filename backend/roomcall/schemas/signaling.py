"""시그널링 메시지 Pydantic 스키마

relay 위의 wire 형식 (camelCase):
- user-joined:    {"senderId"}
- offer:          {"senderId", "offer": {"type", "sdp"}}
- answer:         {"senderId", "answer": {"type", "sdp"}}
- ice-candidate:  {"senderId", "candidate": {"candidate", "sdpMid", "sdpMLineIndex"}}
"""

from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class SignalingEvent(str, Enum):
    """relay 이벤트 이름"""
    USER_JOINED = "user-joined"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


class NegotiationState(str, Enum):
    """offer/answer 상태 머신 상태"""
    IDLE = "idle"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    STABLE = "stable"


class ConnectionStatus(str, Enum):
    """외부로 보고되는 연결 상태"""
    CONNECTING = "connecting"
    WAITING_FOR_PEER = "waiting-for-peer"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    # 카메라/마이크 획득 실패 (로컬 미디어 없이 진행)
    MEDIA_DENIED = "media-denied"


class SessionDescription(BaseModel):
    """RTCSessionDescriptionInit"""
    type: str
    sdp: str


class IceCandidate(BaseModel):
    """RTCIceCandidateInit"""
    model_config = ConfigDict(populate_by_name=True)

    candidate: str
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_mline_index: int | None = Field(default=None, alias="sdpMLineIndex")


class _SignalingMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender_id: str = Field(alias="senderId", min_length=1)

    @property
    def event(self) -> SignalingEvent:
        raise NotImplementedError

    def to_payload(self) -> dict:
        """relay data 필드로 직렬화"""
        return self.model_dump(by_alias=True, exclude_none=True)


class PresenceAnnounce(_SignalingMessage):
    """입장 알림"""

    @property
    def event(self) -> SignalingEvent:
        return SignalingEvent.USER_JOINED


class Offer(_SignalingMessage):
    """SDP Offer"""
    offer: SessionDescription

    @property
    def event(self) -> SignalingEvent:
        return SignalingEvent.OFFER


class Answer(_SignalingMessage):
    """SDP Answer"""
    answer: SessionDescription

    @property
    def event(self) -> SignalingEvent:
        return SignalingEvent.ANSWER


class CandidateAdd(_SignalingMessage):
    """ICE Candidate 1개"""
    candidate: IceCandidate

    @property
    def event(self) -> SignalingEvent:
        return SignalingEvent.ICE_CANDIDATE


SignalingMessage = Union[PresenceAnnounce, Offer, Answer, CandidateAdd]

MESSAGE_TYPES: dict[SignalingEvent, type[_SignalingMessage]] = {
    SignalingEvent.USER_JOINED: PresenceAnnounce,
    SignalingEvent.OFFER: Offer,
    SignalingEvent.ANSWER: Answer,
    SignalingEvent.ICE_CANDIDATE: CandidateAdd,
}


def parse_message(event: str, data: dict) -> SignalingMessage | None:
    """relay 이벤트를 시그널링 메시지로 변환

    Returns:
        알 수 없는 이벤트이거나 payload가 잘못된 경우 None
    """
    try:
        message_type = MESSAGE_TYPES[SignalingEvent(event)]
    except (ValueError, KeyError):
        return None

    try:
        return message_type.model_validate(data)
    except ValidationError:
        return None
