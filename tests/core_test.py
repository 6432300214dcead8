from datetime import timedelta

import structlog
from opentelemetry.sdk.trace import TracerProvider

from connections.in_memory_store import InMemoryJobStore
from connections.redis_store import RedisJobStore
from core.config import AgentSettings, LocalSettings, ProductionSettings, get_settings
from core.dependencies import get_store
from core.logging import add_trace_context, configure_logging


def test_settings_become_component_records():
    settings = LocalSettings(PRICE_SATS=4200, PAYMENT_WINDOW_MINUTES=15, JOB_RETENTION_DAYS=3, STORE_TIMEOUT=1.5)

    payment = settings.payment_terms()
    assert payment.amount_sats == 4200
    assert payment.window == timedelta(minutes=15)

    lifecycle = settings.lifecycle_config()
    assert lifecycle.retention == timedelta(days=3)
    assert lifecycle.store_timeout == 1.5


def test_agent_settings():
    settings = AgentSettings(PRINTER_HOST="10.0.0.7", POLL_INTERVAL=3)

    assert settings.printer_url == "http://10.0.0.7:7125"
    assert settings.agent_config().poll_interval == 3
    assert settings.agent_config().file_prefix == "job_"


def test_get_settings_by_env(monkeypatch):
    monkeypatch.delenv("ENV", raising=False)
    assert isinstance(get_settings(), LocalSettings)

    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    settings = get_settings()
    assert isinstance(settings, ProductionSettings)
    assert settings.REDIS_URL == "redis://cache:6379/0"


def test_store_follows_environment():
    assert isinstance(get_store(LocalSettings()), InMemoryJobStore)
    assert isinstance(get_store(ProductionSettings(REDIS_URL="redis://localhost:6379/0")), RedisJobStore)


def test_trace_context_added_inside_span():
    tracer = TracerProvider().get_tracer("test")

    assert "trace_id" not in add_trace_context(None, "info", {"event": "outside"})

    with tracer.start_as_current_span("job.create") as span:
        event = add_trace_context(None, "info", {"event": "inside"})

    assert event["trace_id"] == format(span.get_span_context().trace_id, "032x")
    assert len(event["span_id"]) == 16


def test_configure_logging_json(capsys):
    configure_logging(json_logs=True, log_level="INFO", service="print-agent")
    try:
        logger = structlog.get_logger()
        logger.debug("filtered_out")
        logger.info("job_created", job_id="abc")

        out = capsys.readouterr().out
        assert "filtered_out" not in out
        assert '"event": "job_created"' in out
        assert '"job_id": "abc"' in out
        assert '"service": "print-agent"' in out
    finally:
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()
