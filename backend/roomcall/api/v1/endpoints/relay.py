"""시그널링 relay 엔드포인트 - 채널 인가 및 이벤트 발행"""

import logging
from typing import Annotated

import redis.asyncio as redis
from fastapi import APIRouter, Depends, HTTPException, status

from roomcall.api.dependencies import get_relay_client
from roomcall.core.config import Settings, get_settings
from roomcall.core.exceptions import AuthDenied
from roomcall.core.relay_pubsub import publish_event
from roomcall.core.security import create_channel_token, is_room_channel
from roomcall.schemas.relay import (
    ChannelAuthRequest,
    ChannelAuthResponse,
    TriggerRequest,
    TriggerResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/relay", tags=["Relay"])


@router.post("/auth", response_model=ChannelAuthResponse)
async def authorize_channel(
    body: ChannelAuthRequest,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """private 룸 채널 구독 인가 (socket_id + channel_name 서명)"""
    try:
        token = create_channel_token(body.socket_id, body.channel_name, settings)
    except AuthDenied as e:
        logger.warning(f"Channel auth denied: channel={body.channel_name}, reason={e.message}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "FORBIDDEN", "message": e.message},
        )

    return ChannelAuthResponse(auth=token)


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_event(
    body: TriggerRequest,
    client: Annotated[redis.Redis, Depends(get_relay_client)],
):
    """룸 채널로 시그널링 이벤트 발행"""
    if not is_room_channel(body.channel):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "BAD_REQUEST", "message": "룸 채널이 아닙니다."},
        )

    try:
        receivers = await publish_event(client, body.channel, body.event.value, body.data)
    except redis.RedisError as e:
        logger.warning(f"Relay publish failed: channel={body.channel}, event={body.event.value}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "PUBLISH_FAILED", "message": "이벤트 발행에 실패했습니다."},
        )

    return TriggerResponse(channel=body.channel, event=body.event, receivers=receivers)
