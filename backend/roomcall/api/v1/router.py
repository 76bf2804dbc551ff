from fastapi import APIRouter

from roomcall.api.v1.endpoints import relay, rooms

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(relay.router)
api_router.include_router(rooms.router)
