"""공유 API dependencies"""

import redis.asyncio as redis

from roomcall.core.redis import get_redis


async def get_relay_client() -> redis.Redis:
    """relay 발행용 Redis 클라이언트 의존성"""
    return await get_redis()
