from roomcall.schemas.relay import (
    ChannelAuthRequest,
    ChannelAuthResponse,
    CreateRoomResponse,
    IceServer,
    TriggerRequest,
    TriggerResponse,
)
from roomcall.schemas.signaling import (
    Answer,
    CandidateAdd,
    ConnectionStatus,
    IceCandidate,
    NegotiationState,
    Offer,
    PresenceAnnounce,
    SessionDescription,
    SignalingEvent,
    SignalingMessage,
    parse_message,
)

__all__ = [
    # Relay API
    "ChannelAuthRequest",
    "ChannelAuthResponse",
    "CreateRoomResponse",
    "IceServer",
    "TriggerRequest",
    "TriggerResponse",
    # Signaling
    "Answer",
    "CandidateAdd",
    "ConnectionStatus",
    "IceCandidate",
    "NegotiationState",
    "Offer",
    "PresenceAnnounce",
    "SessionDescription",
    "SignalingEvent",
    "SignalingMessage",
    "parse_message",
]
