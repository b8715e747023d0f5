from typing import Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .config import EngineSettings, get_settings

INSTRUMENTATION_NAME = "payroll_engine"


def build_resource(settings: EngineSettings) -> Resource:
    return Resource.create({
        "service.name": "payroll-engine",
        "service.version": settings.engine_version,
        "deployment.env": settings.env,
    })


def configure_tracing(otlp_endpoint: Optional[str] = None, settings: Optional[EngineSettings] = None) -> TracerProvider:
    settings = settings or get_settings()
    tracer_provider = TracerProvider(resource=build_resource(settings))
    endpoint = otlp_endpoint or settings.otlp_endpoint
    if endpoint:
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
        )
    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


def configure_metrics(otlp_endpoint: Optional[str] = None, settings: Optional[EngineSettings] = None) -> MeterProvider:
    settings = settings or get_settings()
    endpoint = otlp_endpoint or settings.otlp_endpoint
    metric_reader = None
    if endpoint:
        metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=endpoint))
    provider_kwargs = {"resource": build_resource(settings)}
    if metric_reader:
        provider_kwargs["metric_readers"] = [metric_reader]
    meter_provider = MeterProvider(**provider_kwargs)
    metrics.set_meter_provider(meter_provider)
    return meter_provider


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(INSTRUMENTATION_NAME)


def get_meter() -> metrics.Meter:
    return metrics.get_meter(INSTRUMENTATION_NAME)
