import functools
import hashlib
import logging
import os
import time
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Callable, Optional, TypeVar

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from neptune.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _hash_user_id(user_id: str) -> str:
    return hashlib.sha256(user_id.encode()).hexdigest()[:16]


class TelemetryService:
    """Tracing and operation metrics for the assistant.

    When disabled, spans come from the OpenTelemetry API's no-op tracer so
    callers never need to branch on configuration.
    """

    def __init__(
        self,
        enabled: bool = False,
        service_name: str = "neptune",
        otlp_endpoint: Optional[str] = None,
        otlp_timeout: int = 10,
    ):
        self.enabled = enabled and bool(otlp_endpoint)

        if self.enabled:
            resource = Resource.create(
                {
                    "service.name": service_name,
                    "service.version": os.getenv("NEPTUNE_VERSION", "unknown"),
                    "environment": os.getenv("ENVIRONMENT", "production"),
                }
            )
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, timeout=otlp_timeout))
            )
            trace.set_tracer_provider(tracer_provider)
            logger.info(f"Telemetry enabled, exporting spans to {otlp_endpoint}")

        self.tracer = trace.get_tracer(__name__)
        self.meter = metrics.get_meter(__name__)
        self.operation_counter = self.meter.create_counter(
            "neptune.operations",
            description="Number of operations performed",
        )
        self.operation_duration = self.meter.create_histogram(
            "neptune.operation.duration",
            description="Duration of operations",
            unit="ms",
        )

    @asynccontextmanager
    async def span(self, name: str, **attributes: Any):
        """Open a span, marking it as errored if the body raises."""
        with self.tracer.start_as_current_span(name) as current_span:
            for key, value in attributes.items():
                if value is not None:
                    current_span.set_attribute(key, value if isinstance(value, (str, bool, int, float)) else str(value))
            try:
                yield current_span
            except Exception as e:
                current_span.set_status(Status(StatusCode.ERROR))
                current_span.record_exception(e)
                raise

    def track(self, operation_type: Optional[str] = None):
        """
        Decorator for tracking API operations with telemetry.

        Args:
            operation_type: Type of operation or function name if None
        """

        def decorator(func: Callable[..., T]) -> Callable[..., T]:
            @functools.wraps(func)
            async def wrapper(*args, **kwargs):
                op_type = operation_type or func.__name__
                auth = kwargs.get("auth")
                user_id = getattr(auth, "user_id", None)

                start_time = time.time()
                status = "success"
                async with self.span(op_type, **{"operation.type": op_type}) as current_span:
                    if user_id:
                        current_span.set_attribute("user.id", _hash_user_id(user_id))
                    try:
                        return await func(*args, **kwargs)
                    except Exception:
                        status = "error"
                        raise
                    finally:
                        attributes = {"operation": op_type, "status": status}
                        self.operation_counter.add(1, attributes)
                        self.operation_duration.record((time.time() - start_time) * 1000, attributes)

            return wrapper

        return decorator


@lru_cache()
def get_telemetry_service() -> TelemetryService:
    settings = get_settings()
    return TelemetryService(
        enabled=settings.TELEMETRY_ENABLED,
        service_name=settings.SERVICE_NAME,
        otlp_endpoint=settings.OTLP_ENDPOINT,
        otlp_timeout=settings.OTLP_TIMEOUT,
    )
