import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomcall.api.v1.router import api_router
from roomcall.core.config import get_settings
from roomcall.core.redis import close_redis
from roomcall.core.telemetry import instrument_fastapi, setup_telemetry

settings = get_settings()

# 로깅 설정
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """애플리케이션 라이프사이클"""
    setup_telemetry("roomcall-relay", "0.1.0")
    yield
    await close_redis()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="roomcall - 1:1 video call signaling relay API",
    lifespan=lifespan,
)

# OpenTelemetry FastAPI 계측
instrument_fastapi(app)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API 라우터 등록
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict:
    """헬스 체크"""
    return {"status": "ok"}
