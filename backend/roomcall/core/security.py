"""채널 인가 토큰

relay 연결 식별자(socket_id)와 채널 이름을 묶어 서명한 JWT를 발급/검증합니다.
"""

import re
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from roomcall.core.config import Settings, get_settings
from roomcall.core.exceptions import AuthDenied
from roomcall.core.webrtc_config import ROOM_CHANNEL_PREFIX

_CHANNEL_RE = re.compile(rf"^{re.escape(ROOM_CHANNEL_PREFIX)}[A-Za-z0-9_-]{{1,64}}$")
_SOCKET_ID_RE = re.compile(r"^[A-Za-z0-9.]{1,64}$")


def is_room_channel(channel_name: str) -> bool:
    """private-room-<roomId> 형식인지 확인"""
    return bool(_CHANNEL_RE.match(channel_name or ""))


def create_channel_token(
    socket_id: str,
    channel_name: str,
    settings: Settings | None = None,
) -> str:
    """채널 구독 토큰 생성

    Raises:
        AuthDenied: socket_id 또는 채널 이름 형식이 잘못된 경우
    """
    settings = settings or get_settings()

    if not _SOCKET_ID_RE.match(socket_id or ""):
        raise AuthDenied("Invalid socket id", socket_id=socket_id)
    if not is_room_channel(channel_name):
        raise AuthDenied("Channel is not a room channel", channel=channel_name)

    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.channel_token_expire_minutes
    )
    to_encode = {"sub": socket_id, "channel": channel_name, "exp": expire, "type": "channel"}
    return jwt.encode(
        to_encode,
        settings.channel_secret_key,
        algorithm=settings.channel_token_algorithm,
    )


def decode_channel_token(token: str, settings: Settings | None = None) -> dict | None:
    """토큰 디코딩 (검증 포함)"""
    settings = settings or get_settings()
    try:
        return jwt.decode(
            token,
            settings.channel_secret_key,
            algorithms=[settings.channel_token_algorithm],
        )
    except JWTError:
        return None


def verify_channel_token(
    token: str,
    socket_id: str,
    channel_name: str,
    settings: Settings | None = None,
) -> None:
    """토큰이 해당 연결/채널에 대해 발급되었는지 검증

    Raises:
        AuthDenied: 서명/만료/클레임 불일치
    """
    payload = decode_channel_token(token, settings)
    if payload is None:
        raise AuthDenied("Invalid or expired channel token", channel=channel_name)
    if payload.get("type") != "channel":
        raise AuthDenied("Not a channel token", channel=channel_name)
    if payload.get("sub") != socket_id or payload.get("channel") != channel_name:
        raise AuthDenied("Channel token does not match subscription", channel=channel_name)
