"""relay API 요청/응답 스키마"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from roomcall.schemas.signaling import SignalingEvent


class ChannelAuthRequest(BaseModel):
    """채널 인가 요청 (relay 연결 식별자 + 채널 이름)"""
    socket_id: str
    channel_name: str


class ChannelAuthResponse(BaseModel):
    """채널 인가 응답"""
    auth: str


class TriggerRequest(BaseModel):
    """relay 발행 요청"""
    channel: str
    event: SignalingEvent
    data: dict[str, Any]

    @field_validator("data")
    @classmethod
    def require_sender(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not value.get("senderId"):
            raise ValueError("data.senderId is required")
        return value


class TriggerResponse(BaseModel):
    """relay 발행 결과"""
    channel: str
    event: SignalingEvent
    receivers: int


class IceServer(BaseModel):
    """ICE 서버 설정"""
    urls: str
    username: str | None = None
    credential: str | None = None


class CreateRoomResponse(BaseModel):
    """룸 생성 응답"""
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(serialization_alias="roomId")
    channel: str
    ice_servers: list[IceServer] = Field(serialization_alias="iceServers")
