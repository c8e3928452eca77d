import pytest
import structlog

from orgauthority.core import logging as log_config
from orgauthority.core.settings import settings


@pytest.fixture(autouse=True)
def clean_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


def _render(event: str) -> dict:
    event_dict = {"event": event}
    for processor in log_config._shared_processors():
        event_dict = processor(None, "info", event_dict)
    return event_dict


def test_events_carry_service_and_request_context():
    log_config.bind_request_context(request_id="req-1", locale="fa", user_id=7, session_id=None)

    rendered = _render("invitation.accepted")

    assert rendered["request_id"] == "req-1"
    assert rendered["locale"] == "fa"
    assert rendered["user_id"] == 7
    assert "session_id" not in rendered
    assert rendered["service"] == settings.app_name
    assert rendered["environment"] == settings.environment
    assert rendered["level"] == "info"


def test_clearing_request_context_keeps_other_bindings():
    structlog.contextvars.bind_contextvars(task="sweep")
    log_config.bind_request_context(request_id="req-2")

    log_config.clear_request_context()

    assert structlog.contextvars.get_contextvars() == {"task": "sweep"}


def test_unknown_context_keys_are_rejected():
    with pytest.raises(ValueError):
        log_config.bind_request_context(password="secret")


def test_sql_logging_follows_debug(monkeypatch):
    monkeypatch.setattr(settings, "debug", False)
    assert log_config.get_logging_config()["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"
    monkeypatch.setattr(settings, "debug", True)
    assert log_config.get_logging_config()["loggers"]["sqlalchemy.engine"]["level"] == "INFO"
