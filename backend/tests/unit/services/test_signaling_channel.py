"""SignalingChannel / relay 연결 단위 테스트"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import redis.asyncio as redis

from roomcall.core.config import Settings
from roomcall.core.exceptions import AuthDenied, PublishFailed
from roomcall.core.security import create_channel_token
from roomcall.schemas.signaling import Offer, PresenceAnnounce, SessionDescription
from roomcall.services.signaling.channel import (
    HttpChannelAuthorizer,
    LocalChannelAuthorizer,
    RedisRelay,
    SignalingChannel,
)

ROOM_ID = "abcd1234"
CHANNEL = "private-room-abcd1234"


@pytest.fixture
def received():
    return []


@pytest.fixture
async def opened_channel(make_relay, authorizer, received):
    channel = SignalingChannel(make_relay(), authorizer, ROOM_ID, "alice")
    channel.on_message(received.append)
    await channel.open()
    yield channel
    await channel.close()


class TestSignalingChannel:

    @pytest.mark.asyncio
    async def test_open_announces_presence(self, opened_channel, relay_hub, received, wait_until):
        """구독 후 user-joined 발행 (자기 자신에게도 전달됨)"""
        # Then
        assert relay_hub.published[0] == (CHANNEL, "user-joined", {"senderId": "alice"})
        await wait_until(lambda: len(received) == 1)
        assert isinstance(received[0], PresenceAnnounce)
        assert received[0].sender_id == "alice"

    @pytest.mark.asyncio
    async def test_messages_delivered_in_sender_order(
        self, opened_channel, make_relay, relay_hub, received, wait_until
    ):
        """같은 발신자의 메시지는 발행 순서대로 전달"""
        # Given
        peer = make_relay()

        # When
        await peer.publish(CHANNEL, "user-joined", {"senderId": "bob"})
        await peer.publish(CHANNEL, "offer", {"senderId": "bob", "offer": {"type": "offer", "sdp": "v=0"}})

        # Then
        await wait_until(lambda: len(received) == 3)
        assert [m.event.value for m in received[1:]] == ["user-joined", "offer"]
        assert isinstance(received[2], Offer)

    @pytest.mark.asyncio
    async def test_malformed_message_dropped(self, opened_channel, make_relay, received, wait_until):
        """잘못된 payload는 버리고 다음 메시지 계속 처리"""
        peer = make_relay()

        await peer.publish(CHANNEL, "offer", {"senderId": "bob"})
        await peer.publish(CHANNEL, "user-joined", {"senderId": "bob"})

        await wait_until(lambda: len(received) == 2)
        assert received[1].sender_id == "bob"
        assert isinstance(received[1], PresenceAnnounce)

    @pytest.mark.asyncio
    async def test_publish_uses_wire_payload(self, opened_channel, relay_hub):
        await opened_channel.publish(
            Offer(sender_id="alice", offer=SessionDescription(type="offer", sdp="v=0"))
        )

        assert relay_hub.published[-1] == (
            CHANNEL,
            "offer",
            {"senderId": "alice", "offer": {"type": "offer", "sdp": "v=0"}},
        )

    @pytest.mark.asyncio
    async def test_auth_denied_aborts_open(self, make_relay):
        """다른 secret으로 서명된 토큰 → AuthDenied, 구독 없음"""
        # Given
        relay = make_relay()
        channel = SignalingChannel(
            relay, LocalChannelAuthorizer(Settings(channel_secret_key="wrong")), ROOM_ID, "alice"
        )

        # When / Then
        with pytest.raises(AuthDenied):
            await channel.open()

        await channel.close()
        assert relay.unsubscribe_count == 0
        assert relay.close_count == 1

    @pytest.mark.asyncio
    async def test_presence_failure_does_not_abort_open(self, make_relay, authorizer, relay_hub):
        """presence 발행 실패는 로깅만 하고 구독 유지"""
        relay_hub.fail_publish = True
        channel = SignalingChannel(make_relay(), authorizer, ROOM_ID, "alice")

        await channel.open()

        assert len(relay_hub.subscribers[CHANNEL]) == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_relay, authorizer, relay_hub):
        # Given
        relay = make_relay()
        channel = SignalingChannel(relay, authorizer, ROOM_ID, "alice")
        await channel.open()

        # When
        await channel.close()
        await channel.close()

        # Then
        assert relay.unsubscribe_count == 1
        assert relay.close_count == 1
        assert relay_hub.subscribers[CHANNEL] == []

    @pytest.mark.asyncio
    async def test_publish_after_close_fails(self, make_relay, authorizer):
        channel = SignalingChannel(make_relay(), authorizer, ROOM_ID, "alice")
        await channel.open()
        await channel.close()

        with pytest.raises(PublishFailed):
            await channel.publish(PresenceAnnounce(sender_id="alice"))


class TestHttpChannelAuthorizer:

    @pytest.mark.asyncio
    async def test_returns_token(self):
        """relay API 인가 응답의 auth 반환"""
        # Given
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"auth": "signed-token"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://relay") as client:
            # When
            auth = await HttpChannelAuthorizer(client)("1.2", CHANNEL)

        # Then
        assert auth == "signed-token"
        assert requests == [{"socket_id": "1.2", "channel_name": CHANNEL}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403, 500])
    async def test_error_status_denied(self, status_code):
        transport = httpx.MockTransport(lambda request: httpx.Response(status_code, json={}))

        async with httpx.AsyncClient(transport=transport, base_url="http://relay") as client:
            with pytest.raises(AuthDenied):
                await HttpChannelAuthorizer(client)("1.2", CHANNEL)

    @pytest.mark.asyncio
    async def test_unreachable_denied(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://relay") as client:
            with pytest.raises(AuthDenied):
                await HttpChannelAuthorizer(client)("1.2", CHANNEL)


class TestRedisRelay:

    @pytest.fixture
    def redis_client(self):
        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()

        client = MagicMock()
        client.pubsub.return_value = pubsub
        client.publish = AsyncMock(return_value=1)
        client.aclose = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_subscribe_with_valid_token(self, redis_client, test_settings):
        """유효한 토큰으로 구독"""
        # Given
        relay = RedisRelay(client=redis_client, settings=test_settings)
        socket_id = await relay.connect()

        # When
        await relay.subscribe(CHANNEL, create_channel_token(socket_id, CHANNEL, test_settings))

        # Then
        redis_client.pubsub.return_value.subscribe.assert_awaited_once_with(CHANNEL)

    @pytest.mark.asyncio
    async def test_subscribe_with_foreign_token_denied(self, redis_client, test_settings):
        """다른 연결용 토큰으로는 구독 불가"""
        relay = RedisRelay(client=redis_client, settings=test_settings)
        await relay.connect()

        with pytest.raises(AuthDenied):
            await relay.subscribe(CHANNEL, create_channel_token("1.1", CHANNEL, test_settings))

        redis_client.pubsub.return_value.subscribe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_publish_error_wrapped(self, redis_client, test_settings):
        redis_client.publish.side_effect = redis.ConnectionError("down")
        relay = RedisRelay(client=redis_client, settings=test_settings)
        await relay.connect()

        with pytest.raises(PublishFailed) as exc_info:
            await relay.publish(CHANNEL, "offer", {"senderId": "a"})

        assert exc_info.value.context == {"channel": CHANNEL, "event": "offer"}

    @pytest.mark.asyncio
    async def test_publish_via_trigger_api(self, redis_client, test_settings):
        """http_client가 있으면 trigger 엔드포인트로 발행"""
        # Given
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"channel": CHANNEL, "event": "offer", "receivers": 2})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://relay") as client:
            relay = RedisRelay(client=redis_client, settings=test_settings, http_client=client)
            await relay.connect()

            # When
            await relay.publish(CHANNEL, "offer", {"senderId": "a"})

        # Then
        assert requests == [
            ("/api/v1/relay/trigger", {"channel": CHANNEL, "event": "offer", "data": {"senderId": "a"}})
        ]
        redis_client.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_trigger_api_error_wrapped(self, redis_client, test_settings):
        transport = httpx.MockTransport(lambda request: httpx.Response(502, json={}))

        async with httpx.AsyncClient(transport=transport, base_url="http://relay") as client:
            relay = RedisRelay(client=redis_client, settings=test_settings, http_client=client)
            await relay.connect()

            with pytest.raises(PublishFailed):
                await relay.publish(CHANNEL, "offer", {"senderId": "a"})

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client(self, redis_client, test_settings):
        """주입받은 Redis 클라이언트는 닫지 않음"""
        relay = RedisRelay(client=redis_client, settings=test_settings)
        await relay.connect()

        await relay.close()

        redis_client.pubsub.return_value.aclose.assert_awaited_once()
        redis_client.aclose.assert_not_awaited()
