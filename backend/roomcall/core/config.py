from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from roomcall.core.webrtc_config import DEFAULT_STUN_SERVERS


class Settings(BaseSettings):
    """애플리케이션 설정"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # 앱 설정
    app_name: str = "roomcall relay"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Redis (시그널링 relay)
    redis_url: str = "redis://localhost:6379/0"

    # 채널 인가 토큰
    channel_secret_key: str = "your-super-secret-key-change-in-production"
    channel_token_algorithm: str = "HS256"
    channel_token_expire_minutes: int = 60

    # 클라이언트가 사용하는 relay API 주소
    relay_api_url: str = "http://localhost:8000"

    # ICE (STUN만 사용, TURN 미지원)
    ice_servers: list[str] = list(DEFAULT_STUN_SERVERS)
    ice_gathering_timeout: float = 5.0

    # OpenTelemetry (setup_telemetry 호출 시에만 사용)
    otlp_endpoint: str = "http://localhost:4317"
    otlp_export_interval_ms: int = 10000

    # 재연결 정책
    max_reconnect_attempts: int = 3
    reconnect_backoff_seconds: float = 1.0

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]


@lru_cache
def get_settings() -> Settings:
    """설정 싱글톤 반환"""
    return Settings()
