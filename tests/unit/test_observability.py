"""Unit tests for structured event logging and metric fan-out."""

from __future__ import annotations

import json
import logging
from decimal import Decimal

from civitas.observability import Observability, _MetricSinks
from civitas.settings import get_settings


class RecordingSink:
    def __init__(self):
        self.counters = []
        self.timings = []

    def increment(self, metric, *, value, tags):
        self.counters.append((metric, value, tags))

    def record_timing(self, metric, *, value_ms, tags):
        self.timings.append((metric, value_ms, tags))


def test_emit_event_writes_json_line(caplog):
    settings = get_settings()
    logger = logging.getLogger("civitas.tests.observability")
    obs = Observability(settings=settings, component="poller", logger=logger)

    with caplog.at_level(logging.INFO, logger="civitas.tests.observability"):
        obs.emit_event("poller.tick", head=10, amount=Decimal("1.5"))

    message = caplog.records[-1].getMessage()
    if settings.observability.structured_logging:
        payload = json.loads(message)
        assert payload["event"] == "poller.tick"
        assert payload["component"] == "poller"
        assert payload["head"] == 10
        assert payload["amount"] == "1.5"
    else:
        assert message.startswith("poller.tick |")


def test_metrics_are_tagged_with_component():
    sink = RecordingSink()
    obs = Observability(settings=get_settings(), component="synchronizer", sinks=_MetricSinks((sink,)))

    obs.increment("sync.logs_processed", value=3, tags={"kind": "rent_vault", "ignored": None})
    with obs.timed("sync.duration"):
        pass

    assert sink.counters == [("sync.logs_processed", 3, {"component": "synchronizer", "kind": "rent_vault"})]
    assert sink.timings[0][0] == "sync.duration"
    assert sink.timings[0][1] >= 0


def test_metrics_are_noop_without_sinks():
    obs = Observability(settings=get_settings(), component="api")

    obs.increment("anything")
    obs.record_timing("anything", 1.0)
