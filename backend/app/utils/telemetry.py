"""
Optional OpenTelemetry tracing.
Instruments the FastAPI app, the SQLAlchemy engine and Redis, exporting over
OTLP. Requires the ``telemetry`` extra; disabled unless OTEL_ENABLED is set.
"""
from app.config import get_settings
from app.logging_config import get_logger

logger = get_logger("telemetry")
settings = get_settings()

_tracer_provider = None


def setup_telemetry(app=None, engine=None) -> bool:
    """Initialize tracing. Returns True when a tracer provider was installed."""
    global _tracer_provider

    if not settings.OTEL_ENABLED:
        logger.info("otel_disabled")
        return False

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME

        resource = Resource.create({
            SERVICE_NAME: settings.OTEL_SERVICE_NAME,
            "deployment.environment": settings.ENVIRONMENT,
        })

        _tracer_provider = TracerProvider(resource=resource)
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.OTEL_EXPORTER_ENDPOINT,
            insecure=settings.OTEL_EXPORTER_ENDPOINT.startswith("http://"),
        )
        _tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        trace.set_tracer_provider(_tracer_provider)

        if app is not None:
            _instrument_fastapi(app)
        if engine is not None:
            _instrument_sqlalchemy(engine)
        _instrument_redis()

        logger.info(
            "otel_initialized",
            endpoint=settings.OTEL_EXPORTER_ENDPOINT,
            service=settings.OTEL_SERVICE_NAME,
        )
        return True

    except ImportError as e:
        logger.warning("otel_import_error", error=str(e), hint="pip install '.[telemetry]'")
    except Exception as e:
        logger.error("otel_setup_error", error=str(e))
    return False


def shutdown_telemetry():
    """Flush and shut down the tracer provider."""
    global _tracer_provider
    if _tracer_provider:
        try:
            _tracer_provider.shutdown()
            logger.info("otel_shutdown")
        except Exception as e:
            logger.error("otel_shutdown_error", error=str(e))
        _tracer_provider = None


def _instrument_fastapi(app):
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        FastAPIInstrumentor.instrument_app(app)
        logger.info("otel_instrumented", library="fastapi")
    except ImportError:
        pass


def _instrument_sqlalchemy(engine):
    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
        logger.info("otel_instrumented", library="sqlalchemy")
    except ImportError:
        pass


def _instrument_redis():
    try:
        from opentelemetry.instrumentation.redis import RedisInstrumentor
        RedisInstrumentor().instrument()
        logger.info("otel_instrumented", library="redis")
    except ImportError:
        pass
