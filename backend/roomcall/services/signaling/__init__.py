"""시그널링 코어 모듈"""

from .candidate_buffer import CandidateBuffer
from .channel import (
    HttpChannelAuthorizer,
    LocalChannelAuthorizer,
    RedisRelay,
    RelayTransport,
    SignalingChannel,
)
from .monitor import ConnectionStateMonitor
from .negotiation import NegotiationController
from .transport import AiortcTransport, TransportSession, aiortc_transport_factory

__all__ = [
    "AiortcTransport",
    "CandidateBuffer",
    "ConnectionStateMonitor",
    "HttpChannelAuthorizer",
    "LocalChannelAuthorizer",
    "NegotiationController",
    "RedisRelay",
    "RelayTransport",
    "SignalingChannel",
    "TransportSession",
    "aiortc_transport_factory",
]
