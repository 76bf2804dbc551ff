"""Redis 클라이언트 모듈

시그널링 relay(pub/sub) 전송에 사용하는 비동기 Redis 클라이언트.
- relay 서버: 프로세스 공용 싱글톤 (get_redis)
- 클라이언트 RoomSession: 룸 방문마다 전용 연결 (create_redis_client)
"""

import logging

import redis.asyncio as redis

from roomcall.core.config import get_settings

logger = logging.getLogger(__name__)

_redis_client: redis.Redis | None = None


def create_redis_client(url: str | None = None) -> redis.Redis:
    """새 Redis 클라이언트 생성 (문자열 응답 디코딩)"""
    url = url or get_settings().redis_url
    client = redis.from_url(url, encoding="utf-8", decode_responses=True)
    logger.debug("[Redis] Client created for %s", url)
    return client


async def get_redis() -> redis.Redis:
    """relay 서버용 Redis 싱글톤 반환"""
    global _redis_client

    if _redis_client is None:
        _redis_client = create_redis_client()
        logger.info("[Redis] Shared relay connection ready")

    return _redis_client


async def close_redis() -> None:
    """공용 Redis 연결 종료 (애플리케이션 종료 시 호출)"""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("[Redis] Connection closed")
