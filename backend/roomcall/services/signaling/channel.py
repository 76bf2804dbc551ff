"""시그널링 채널 - 룸별 private pub/sub 토픽

구독 전 인가(authorizer)를 거쳐야 하며, 구독 성공 시 user-joined를 발행합니다.
relay는 발신자별 순서만 보장합니다 (발신자 간 순서는 보장하지 않음).
"""

import asyncio
import logging
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

import httpx
import redis.asyncio as redis

from roomcall.core.config import Settings, get_settings
from roomcall.core.exceptions import AuthDenied, PublishFailed
from roomcall.core.redis import create_redis_client
from roomcall.core.relay_pubsub import get_room_channel, publish_event, subscribe_events
from roomcall.core.security import create_channel_token, verify_channel_token
from roomcall.schemas.signaling import PresenceAnnounce, SignalingMessage, parse_message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[SignalingMessage], None]
ChannelAuthorizer = Callable[[str, str], Awaitable[str]]


class RelayTransport(Protocol):
    """외부 pub/sub relay 연결"""

    async def connect(self) -> str:
        """relay 연결 후 연결 식별자(socket_id) 반환"""
        ...

    async def subscribe(self, channel: str, auth: str) -> None:
        """Raises: AuthDenied"""
        ...

    def events(self) -> AsyncIterator[tuple[str, dict]]: ...

    async def publish(self, channel: str, event: str, data: dict) -> None:
        """Raises: PublishFailed"""
        ...

    async def unsubscribe(self, channel: str) -> None: ...

    async def close(self) -> None: ...


# ===== 인가 =====


class HttpChannelAuthorizer:
    """relay API의 인가 엔드포인트 호출"""

    def __init__(self, http_client: httpx.AsyncClient, path: str = "/api/v1/relay/auth"):
        self.http_client = http_client
        self.path = path

    async def __call__(self, socket_id: str, channel_name: str) -> str:
        try:
            response = await self.http_client.post(
                self.path,
                json={"socket_id": socket_id, "channel_name": channel_name},
            )
        except httpx.RequestError as e:
            raise AuthDenied(f"Authorization endpoint unreachable: {e}", channel=channel_name) from e

        if response.status_code in (401, 403):
            raise AuthDenied("Subscription rejected", channel=channel_name)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AuthDenied(f"Authorization failed: {response.status_code}", channel=channel_name) from e

        return response.json()["auth"]


class LocalChannelAuthorizer:
    """relay와 같은 secret을 가진 프로세스에서 직접 서명"""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    async def __call__(self, socket_id: str, channel_name: str) -> str:
        return create_channel_token(socket_id, channel_name, self.settings)


# ===== Redis relay =====


class RedisRelay:
    """Redis pub/sub 기반 RelayTransport

    발행은 Redis에 직접 하거나, http_client가 주어지면 relay API trigger 엔드포인트를 경유합니다.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        trigger_path: str = "/api/v1/relay/trigger",
    ):
        self.settings = settings or get_settings()
        self.socket_id: str | None = None
        self.http_client = http_client
        self.trigger_path = trigger_path
        self._client = client
        self._owns_client = client is None
        self._pubsub = None

    async def connect(self) -> str:
        if self._client is None:
            self._client = create_redis_client(self.settings.redis_url)
        self._pubsub = self._client.pubsub()
        self.socket_id = f"{secrets.randbelow(10**9)}.{secrets.randbelow(10**9)}"
        logger.info(f"[RedisRelay] Connected, socket_id={self.socket_id}")
        return self.socket_id

    async def subscribe(self, channel: str, auth: str) -> None:
        verify_channel_token(auth, self.socket_id, channel, self.settings)
        await self._pubsub.subscribe(channel)
        logger.info(f"[RedisRelay] Subscribed to {channel}")

    def events(self) -> AsyncIterator[tuple[str, dict]]:
        return subscribe_events(self._pubsub)

    async def publish(self, channel: str, event: str, data: dict) -> None:
        if self.http_client is not None:
            await self._publish_via_api(channel, event, data)
            return

        try:
            await publish_event(self._client, channel, event, data)
        except redis.RedisError as e:
            raise PublishFailed(str(e), channel=channel, event=event) from e

    async def _publish_via_api(self, channel: str, event: str, data: dict) -> None:
        try:
            response = await self.http_client.post(
                self.trigger_path,
                json={"channel": channel, "event": event, "data": data},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise PublishFailed(str(e), channel=channel, event=event) from e

    async def unsubscribe(self, channel: str) -> None:
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(channel)

    async def close(self) -> None:
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


# ===== 채널 =====


class SignalingChannel:
    """한 룸의 시그널링 메시지 송수신"""

    def __init__(
        self,
        relay: RelayTransport,
        authorizer: ChannelAuthorizer,
        room_id: str,
        participant_id: str,
    ):
        self.room_id = room_id
        self.participant_id = participant_id
        self.channel_name = get_room_channel(room_id)
        self._relay = relay
        self._authorizer = authorizer
        self._handlers: list[MessageHandler] = []
        self._reader: asyncio.Task | None = None
        self._subscribed = False
        self._closed = False

    def on_message(self, handler: MessageHandler) -> None:
        """수신 메시지마다 relay 전달 순서대로 1회 호출될 핸들러 등록"""
        self._handlers.append(handler)

    async def open(self) -> "SignalingChannel":
        """인가 → 구독 → user-joined 발행

        Raises:
            AuthDenied: 인가 거부 (룸 입장 중단)
        """
        socket_id = await self._relay.connect()
        auth = await self._authorizer(socket_id, self.channel_name)
        await self._relay.subscribe(self.channel_name, auth)
        self._subscribed = True
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"[SignalingChannel] Joined {self.channel_name} as {self.participant_id}")

        try:
            await self.publish(PresenceAnnounce(sender_id=self.participant_id))
        except PublishFailed as e:
            logger.warning(f"[SignalingChannel] Presence announce failed: {e.message}")

        return self

    async def publish(self, message: SignalingMessage) -> None:
        """Raises: PublishFailed (구독은 유지)"""
        if self._closed:
            raise PublishFailed("Channel closed", channel=self.channel_name)
        await self._relay.publish(self.channel_name, message.event.value, message.to_payload())

    async def close(self) -> None:
        """핸들러 해제 및 구독 종료 (여러 번 호출해도 안전)"""
        if self._closed:
            return
        self._closed = True
        self._handlers.clear()

        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None

        try:
            if self._subscribed:
                await self._relay.unsubscribe(self.channel_name)
        except Exception as e:
            logger.warning(f"[SignalingChannel] Unsubscribe failed: {e}")
        finally:
            await self._relay.close()

        logger.info(f"[SignalingChannel] Closed {self.channel_name}")

    async def _read_loop(self) -> None:
        try:
            async for event, data in self._relay.events():
                message = parse_message(event, data)
                if message is None:
                    logger.warning(f"[SignalingChannel] Dropping malformed '{event}' message")
                    continue
                for handler in list(self._handlers):
                    handler(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"[SignalingChannel] Relay stream for {self.channel_name} failed")
