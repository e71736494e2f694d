"""
Metrics for API requests and the two backing stores.

Instruments come from the OpenTelemetry metrics API. ``setup_metrics`` installs
an SDK ``MeterProvider`` with an OTLP exporter when an endpoint is configured;
without one every instrument is a no-op and nothing here changes behaviour.
"""

import functools
import inspect
import time
from typing import Callable, Sequence

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request

from webapp.shared.config import Settings
from webapp.shared.logger import get_logger

logger = get_logger("metrics")
api_logger = get_logger("api")

UNMATCHED_ROUTE = "unmatched"


class _Instruments:
    """Instruments created from one meter; operation instruments are lazy."""

    def __init__(self, meter):
        self.meter = meter
        self.requests = meter.create_counter(
            "webapp.api.requests",
            description="API calls by method and route",
        )
        self.request_duration = meter.create_histogram(
            "webapp.api.duration",
            description="API response time by method and route",
            unit="ms",
        )
        # kind -> (duration histogram, error counter)
        self.operations: dict[str, tuple] = {}

    def for_kind(self, kind: str):
        if kind not in self.operations:
            self.operations[kind] = (
                self.meter.create_histogram(
                    f"webapp.{kind}.operation.duration",
                    description=f"{kind} operation time",
                    unit="ms",
                ),
                self.meter.create_counter(
                    f"webapp.{kind}.operation.errors",
                    description=f"{kind} operation failures",
                ),
            )
        return self.operations[kind]


_instruments = _Instruments(metrics.get_meter("webapp"))
_global_provider_set = False


def setup_metrics(settings: Settings, readers: Sequence[MetricReader] = ()) -> MeterProvider | None:
    """
    Build a MeterProvider exporting over OTLP/HTTP when
    ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set. Extra ``readers`` are attached as
    well. Returns None when metrics stay disabled.
    """
    global _instruments, _global_provider_set

    metric_readers = list(readers)
    endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT
    if endpoint:
        endpoint = endpoint.rstrip("/").replace("4317", "4318")  # HTTP port
        exporter = OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics", timeout=30)
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=exporter,
                export_interval_millis=settings.OTEL_EXPORT_INTERVAL_MS,
            )
        )
        logger.info(f"OTLP metrics exporter configured for endpoint: {endpoint}")

    if not metric_readers:
        logger.info("Metrics export disabled: OTEL_EXPORTER_OTLP_ENDPOINT is not set")
        _instruments = _Instruments(metrics.get_meter("webapp"))
        return None

    resource = Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "deployment.environment": settings.ENV,
    })
    provider = MeterProvider(resource=resource, metric_readers=metric_readers)
    # the global provider can only be set once per process
    if not _global_provider_set:
        metrics.set_meter_provider(provider)
        _global_provider_set = True
    _instruments = _Instruments(provider.get_meter("webapp"))
    return provider


def _record(kind: str, label: str, started: float, error: BaseException | None) -> None:
    duration_ms = round((time.perf_counter() - started) * 1000, 3)
    duration, errors = _instruments.for_kind(kind)
    duration.record(duration_ms, {"operation": label, "success": error is None})
    if error is None:
        logger.debug(
            f"{kind} operation {label} completed",
            extra={"action": f"{kind}.{label}", "duration_ms": duration_ms},
        )
        return
    errors.add(1, {"operation": label})
    logger.error(
        f"{kind} operation {label} failed",
        exc_info=(type(error), error, error.__traceback__),
        extra={"action": f"{kind}.{label}", "duration_ms": duration_ms},
    )


def observe(kind: str, label: str) -> Callable:
    """
    Wrap a store call with timing, an error counter and a log line.

    ``kind`` groups the instruments (``db``, ``s3``); ``label`` names the
    operation. Results and exceptions pass through untouched.
    """

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as exc:
                    _record(kind, label, started, exc)
                    raise
                _record(kind, label, started, None)
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                _record(kind, label, started, exc)
                raise
            _record(kind, label, started, None)
            return result

        return wrapper

    return decorator


def _route_name(request: Request) -> str:
    # raw paths of unmatched requests would make the label set unbounded
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class ApiMetricsMiddleware(BaseHTTPMiddleware):
    """Counts and times every request and writes one access log line."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 3)

        method = request.method
        route = _route_name(request)
        attributes = {"method": method, "route": route, "status_code": response.status_code}
        _instruments.requests.add(1, attributes)
        _instruments.request_duration.record(duration_ms, attributes)

        api_logger.info(
            f"{method} {route}",
            extra={
                "method": method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
