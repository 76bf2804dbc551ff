"""룸 생성 엔드포인트"""

from typing import Annotated
from uuid import uuid4

from fastapi import APIRouter, Depends, status

from roomcall.core.config import Settings, get_settings
from roomcall.core.relay_pubsub import get_room_channel
from roomcall.core.webrtc_config import ROOM_ID_LENGTH
from roomcall.schemas.relay import CreateRoomResponse, IceServer

router = APIRouter(prefix="/rooms", tags=["Rooms"])


@router.post("", response_model=CreateRoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(settings: Annotated[Settings, Depends(get_settings)]):
    """새 룸 ID 발급 (서버에 저장하지 않음)"""
    room_id = uuid4().hex[:ROOM_ID_LENGTH]
    return CreateRoomResponse(
        room_id=room_id,
        channel=get_room_channel(room_id),
        ice_servers=[IceServer(urls=url) for url in settings.ice_servers],
    )
