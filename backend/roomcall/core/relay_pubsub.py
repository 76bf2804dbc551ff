"""시그널링 relay를 위한 Redis Pub/Sub 모듈

룸 채널(private-room-<roomId>)로 시그널링 이벤트를 발행/구독합니다.
메시지 형식: {"event": "<user-joined|offer|answer|ice-candidate>", "data": {...}}
"""

import json
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as redis
from redis.asyncio.client import PubSub

from roomcall.core.webrtc_config import ROOM_CHANNEL_PREFIX

logger = logging.getLogger(__name__)


def get_room_channel(room_id: str) -> str:
    """룸별 채널 이름 생성"""
    return f"{ROOM_CHANNEL_PREFIX}{room_id}"


def encode_event(event: str, data: dict) -> str:
    return json.dumps({"event": event, "data": data}, ensure_ascii=False, default=str)


def decode_event(raw: str) -> tuple[str, dict] | None:
    """relay 메시지 디코딩 (형식 오류 시 None)"""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    event = payload.get("event")
    data = payload.get("data")
    if not isinstance(event, str) or not isinstance(data, dict):
        return None
    return event, data


async def publish_event(client: redis.Redis, channel: str, event: str, data: dict) -> int:
    """시그널링 이벤트 발행

    Returns:
        메시지를 수신한 구독자 수

    Raises:
        redis.RedisError: 발행 실패 (호출자가 처리)
    """
    receivers = await client.publish(channel, encode_event(event, data))
    logger.debug("이벤트 발행: channel=%s event=%s receivers=%s", channel, event, receivers)
    return receivers


async def subscribe_events(
    pubsub: PubSub,
) -> AsyncGenerator[tuple[str, dict], None]:
    """구독 중인 PubSub에서 이벤트를 도착 순서대로 반환

    구독/해제는 호출자가 관리합니다. 디코딩할 수 없는 메시지는 건너뜁니다.
    """
    async for message in pubsub.listen():
        if message.get("type") != "message":
            continue

        decoded = decode_event(message.get("data"))
        if decoded is None:
            logger.warning("잘못된 relay 메시지 무시: channel=%s", message.get("channel"))
            continue

        yield decoded
