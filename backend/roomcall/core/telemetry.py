"""OpenTelemetry 계측 설정

relay 서버와 CLI 클라이언트가 함께 사용합니다.
- trace: room.join 등 세션 단위 span (OTLP gRPC)
- metric: offer/answer 협상 및 relay 메트릭 (OTLP gRPC)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.semconv.resource import ResourceAttributes

from roomcall.core.config import Settings, get_settings

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# (표시 이름, 모듈, 클래스) - setup_telemetry에서 자동 계측
_CLIENT_INSTRUMENTORS = (
    ("HTTPX", "opentelemetry.instrumentation.httpx", "HTTPXClientInstrumentor"),
    ("Redis", "opentelemetry.instrumentation.redis", "RedisInstrumentor"),
)


def _build_resource(service_name: str, service_version: str, settings: Settings) -> Resource:
    return Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: service_name,
            ResourceAttributes.SERVICE_VERSION: service_version,
            ResourceAttributes.DEPLOYMENT_ENVIRONMENT: settings.app_env,
        }
    )


def init_telemetry(
    service_name: str,
    service_version: str = "0.1.0",
    settings: Settings | None = None,
) -> tuple[trace.Tracer, metrics.Meter]:
    """tracer/meter provider를 전역으로 등록

    Args:
        service_name: "roomcall-relay" 또는 "roomcall-client"
        service_version: 서비스 버전
        settings: OTLP 엔드포인트/주기 설정 (기본값: get_settings())

    Returns:
        (Tracer, Meter)
    """
    settings = settings or get_settings()
    resource = _build_resource(service_name, service_version, settings)

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=True))
    )
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=settings.otlp_endpoint, insecure=True),
        export_interval_millis=settings.otlp_export_interval_ms,
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))

    logger.info(f"[Telemetry] {service_name} exporting to {settings.otlp_endpoint}")
    return (
        trace.get_tracer(service_name, service_version),
        metrics.get_meter(service_name, service_version),
    )


def instrument_fastapi(app: FastAPI) -> None:
    """relay API 요청 span 자동 생성"""
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
    except Exception as e:
        logger.warning(f"[Telemetry] FastAPI instrumentation skipped: {e}")


def instrument_clients() -> None:
    """relay 전송에 쓰는 HTTPX/Redis 클라이언트 계측"""
    for label, module_name, class_name in _CLIENT_INSTRUMENTORS:
        try:
            instrumentor = getattr(importlib.import_module(module_name), class_name)
            instrumentor().instrument()
        except Exception as e:
            logger.warning(f"[Telemetry] {label} instrumentation skipped: {e}")
        else:
            logger.debug(f"[Telemetry] {label} instrumentation enabled")


# ===========================================
# 시그널링 메트릭
# ===========================================


class SignalingMetrics:
    """offer/answer 협상 및 relay 메트릭"""

    def __init__(self, meter: metrics.Meter):
        self.meter = meter
        self._init_negotiation_metrics()
        self._init_relay_metrics()

    def _init_negotiation_metrics(self) -> None:
        """협상 상태 머신 메트릭"""
        self.offers_total = self.meter.create_counter(
            name="roomcall_offers_total",
            description="발행한 offer 수",
        )
        self.answers_total = self.meter.create_counter(
            name="roomcall_answers_total",
            description="발행한 answer 수",
        )
        self.time_to_stable = self.meter.create_histogram(
            name="roomcall_time_to_stable_seconds",
            description="협상 시작 → stable 도달 시간",
            unit="s",
        )

    def _init_relay_metrics(self) -> None:
        """candidate/relay 메트릭"""
        self.candidates_buffered_total = self.meter.create_counter(
            name="roomcall_candidates_buffered_total",
            description="remote description 적용 전 버퍼링된 candidate 수",
        )
        self.candidate_errors_total = self.meter.create_counter(
            name="roomcall_candidate_errors_total",
            description="transport가 거부한 candidate 수",
        )
        self.publish_failures_total = self.meter.create_counter(
            name="roomcall_publish_failures_total",
            description="시그널링 메시지 발행 실패 수",
        )


# ===========================================
# 프로세스 전역 상태
# ===========================================

_tracer: trace.Tracer | None = None
_signaling_metrics: SignalingMetrics | None = None


def get_tracer() -> trace.Tracer:
    """설정 전에는 전역 provider의 tracer (기본 noop)"""
    return _tracer or trace.get_tracer("roomcall")


def get_signaling_metrics() -> SignalingMetrics | None:
    return _signaling_metrics


def setup_telemetry(service_name: str, service_version: str = "0.1.0") -> None:
    """프로세스당 한 번 호출 (relay lifespan, CLI --telemetry)"""
    global _tracer, _signaling_metrics

    if _signaling_metrics is not None:
        logger.warning("[Telemetry] Already initialized, skipping")
        return

    _tracer, meter = init_telemetry(service_name, service_version)
    _signaling_metrics = SignalingMetrics(meter)
    instrument_clients()


def record_metric(name: str, value: float = 1, **labels: str) -> None:
    """시그널링 메트릭 기록 (telemetry 미설정 시 무시)

    Usage:
        record_metric("offers_total", room="abcd1234")
        record_metric("time_to_stable", 0.42)
    """
    signaling_metrics = get_signaling_metrics()
    if signaling_metrics is None:
        return

    instrument = getattr(signaling_metrics, name)
    if hasattr(instrument, "record"):
        instrument.record(value, labels)
    else:
        instrument.add(value, labels)
