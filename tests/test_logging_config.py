"""
Tests for logging configuration.
"""

import json
import logging

from app.config import Settings
from app.logging_config import JSONFormatter, configure_logging


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="app.services.reconciliation",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="Webhook %s -> %s",
        args=("evt_1", "payment_confirmed"),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_fields():
    data = json.loads(JSONFormatter().format(make_record()))
    assert data["level"] == "INFO"
    assert data["message"] == "Webhook evt_1 -> payment_confirmed"
    assert data["logger"] == "app.services.reconciliation"


def test_json_formatter_merges_context():
    record = make_record(context={"eventId": "evt_1", "durationMs": 12})
    data = json.loads(JSONFormatter().format(record))
    assert data["eventId"] == "evt_1"
    assert data["durationMs"] == 12


def test_production_uses_json():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(Settings(_env_file=None, app_env="production"))
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.INFO
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
