"""
Distributed Tracing with OpenTelemetry
"""

from functools import wraps
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
import structlog

from app.core.config import settings

logger = structlog.get_logger()

TRACER_NAME = "referral-cashback"


def setup_tracing(app, service_name: str = "referral-cashback-backend"):
    """Setup OpenTelemetry tracing for FastAPI app"""
    resource = Resource.create({
        "service.name": service_name,
        "service.version": settings.VERSION,
        "deployment.environment": settings.ENVIRONMENT,
    })

    tracer_provider = TracerProvider(resource=resource)

    otlp_exporter = OTLPSpanExporter(endpoint=settings.OTLP_ENDPOINT, insecure=True)
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(tracer_provider)

    # Shopify and Resend calls go through httpx
    FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()

    logger.info("Tracing initialized", service_name=service_name, endpoint=settings.OTLP_ENDPOINT)


def get_tracer(name: str = TRACER_NAME):
    """Get tracer instance"""
    return trace.get_tracer(name)


def traced_operation(operation_name: str):
    """Decorator to trace a coroutine as its own span"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            tracer = get_tracer()
            with tracer.start_as_current_span(operation_name) as span:
                span.set_attribute("operation", operation_name)
                try:
                    result = await func(*args, **kwargs)
                    span.set_attribute("status", "success")
                    return result
                except Exception as e:
                    span.set_attribute("status", "error")
                    span.set_attribute("error.type", type(e).__name__)
                    span.set_attribute("error.message", str(e))
                    raise
        return wrapper
    return decorator
