"""Tests for structured logging and Prometheus metrics."""

import json
import logging

from prometheus_client import REGISTRY

from flipcore import logging_config
from flipcore.categories import Category
from flipcore.decision.engine import DecisionEngine, UserCosts
from flipcore.identity.base import ConfidenceTier, Identity
from flipcore.logging_config import get_logger, setup_logging
from flipcore.pricing.price_truth import blocked_price_truth


def sample(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_json_file_logging_with_context(tmp_path):
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    previous_level = root.level
    try:
        setup_logging(tmp_path, level="DEBUG")
        get_logger("flipcore.tests", category="Watches", scan_id=42).warning("pricing blocked")
        get_logger("flipcore.tests").error("registry down")
        for handler in root.handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "flipcore.log").read_text().strip().splitlines()
        record = json.loads(lines[0])
        assert record["message"] == "pricing blocked"
        assert record["level"] == "WARNING"
        assert record["category"] == "Watches"
        assert record["scan_id"] == 42
        assert record["logger"] == "flipcore.tests"
        assert record["source"].startswith("test_logging_metrics.py:")

        errors = (tmp_path / "logs" / "error.log").read_text().strip().splitlines()
        assert len(errors) == 1
        assert json.loads(errors[0])["message"] == "registry down"
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)


def test_console_only_without_log_dir(monkeypatch):
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    monkeypatch.setattr(logging_config.settings, "log_dir", "")
    try:
        setup_logging()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0], logging.StreamHandler)
    finally:
        root.handlers[:] = previous_handlers


def test_decision_metrics_recorded():
    labels = {"category": "Watches", "verdict": "NOT_ENOUGH_INFO"}
    before = sample("flipcore_decisions_total", labels)

    identity = Identity(category=Category.WATCHES, confidence=ConfidenceTier.BLOCKED, block_code="BRAND_UNIDENTIFIED")
    DecisionEngine().decide(identity, blocked_price_truth("IDENTITY_BLOCKED"), UserCosts(buy_price=10))

    assert sample("flipcore_decisions_total", labels) == before + 1
