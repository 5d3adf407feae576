"""Structured event logging and lightweight metrics for the indexer processes."""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, Mapping, MutableMapping, Sequence

from civitas.settings import Settings, get_settings

try:  # pragma: no cover - the OTLP exporter is an optional extra
    from opentelemetry import metrics as otel_metrics
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
except ImportError:  # pragma: no cover - metrics are simply not exported over OTLP
    otel_metrics = None
    OTLPMetricExporter = None  # type: ignore
    MeterProvider = None  # type: ignore
    PeriodicExportingMetricReader = None  # type: ignore


_LOGGER = logging.getLogger("civitas.observability")
_BACKEND_LOCK = threading.Lock()
_SHARED_SINKS: "_MetricSinks | None" = None


class Observability:
    """Emit JSON event lines and forward counters/timings to configured sinks.

    One instance is created per component (``poller``, ``synchronizer``,
    ``api`` ...); the metric sinks are shared process-wide.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        component: str | None = None,
        sinks: "_MetricSinks | None" = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.component = component or "indexer"
        self._logger = logger or _LOGGER
        self._structured = bool(settings.observability.structured_logging)
        self._sinks = sinks

    def emit_event(self, event: str, **fields: Any) -> None:
        """Log ``event`` with ``fields`` as a single JSON line (or a plain line when disabled)."""

        payload = {
            "event": event,
            "component": self.component,
            "chain_id": self.settings.chain.chain_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **{str(key): value for key, value in fields.items()},
        }
        if self._structured:
            self._logger.info(json.dumps(payload, default=_json_default, sort_keys=True))
        else:
            self._logger.info("%s | %s", event, payload)

    def increment(self, metric: str, *, value: float = 1.0, tags: Mapping[str, Any] | None = None) -> None:
        """Bump a counter metric."""

        if self._sinks is None:
            return
        self._sinks.increment(metric, value=value, tags=self._tags(tags))

    def record_timing(self, metric: str, value_ms: float, *, tags: Mapping[str, Any] | None = None) -> None:
        """Record a duration in milliseconds."""

        if self._sinks is None:
            return
        self._sinks.record_timing(metric, value_ms=value_ms, tags=self._tags(tags))

    @contextmanager
    def timed(self, metric: str, *, tags: Mapping[str, Any] | None = None) -> Iterator[None]:
        """Record how long the wrapped block took, even when it raises."""

        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, (time.perf_counter() - started) * 1000.0, tags=tags)

    def _tags(self, tags: Mapping[str, Any] | None) -> dict[str, str] | None:
        merged: dict[str, str] = {"component": self.component}
        for key, value in (tags or {}).items():
            if value is not None:
                merged[str(key)] = str(value)
        return merged


def get_observability(*, component: str | None = None, settings: Settings | None = None) -> Observability:
    """Return an :class:`Observability` bound to the shared metric sinks."""

    resolved = settings or get_settings()
    return Observability(
        settings=resolved,
        component=component,
        sinks=_shared_sinks(resolved),
        logger=_LOGGER,
    )


def reset_observability_cache() -> None:
    """Drop the shared metric sinks so the next lookup rebuilds them."""

    global _SHARED_SINKS
    with _BACKEND_LOCK:
        _SHARED_SINKS = None


@dataclass(slots=True)
class _MetricSinks:
    """Fan-out over every configured metric sink."""

    sinks: Sequence[Any] = field(default_factory=tuple)

    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None:
        for sink in self.sinks:
            sink.increment(metric, value=value, tags=tags)

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None:
        for sink in self.sinks:
            sink.record_timing(metric, value_ms=value_ms, tags=tags)


@dataclass(slots=True)
class _StatsdSink:
    """DogStatsD-flavoured UDP client."""

    host: str
    port: int
    prefix: str
    _socket: socket.socket = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None:
        self._send(metric, value, "c", tags)

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None:
        self._send(metric, value_ms, "ms", tags)

    def _send(self, metric: str, value: float, kind: str, tags: Mapping[str, str] | None) -> None:
        name = f"{self.prefix}.{metric}" if self.prefix else metric
        line = f"{name}:{_format_number(value)}|{kind}"
        if tags:
            line += "|#" + ",".join(f"{key}:{val}" for key, val in sorted(tags.items()))
        try:
            self._socket.sendto(line.encode("utf-8"), (self.host, self.port))
        except OSError:  # pragma: no cover - UDP delivery is best effort
            _LOGGER.debug("StatsD send failed for metric %s", metric, exc_info=True)


class _OtelSink:
    """Counters and histograms exported through an OTLP metric reader."""

    def __init__(self, *, endpoint: str, service_name: str) -> None:
        self._counters: MutableMapping[str, Any] = {}
        self._histograms: MutableMapping[str, Any] = {}
        self._meter = None
        if otel_metrics is None or MeterProvider is None:
            _LOGGER.warning("OTLP endpoint %s configured but opentelemetry is not installed", endpoint)
            return
        exporter = OTLPMetricExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
        provider = MeterProvider(metric_readers=[PeriodicExportingMetricReader(exporter)])
        otel_metrics.set_meter_provider(provider)
        self._meter = otel_metrics.get_meter(service_name or "civitas-indexer")

    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None:
        if self._meter is None:
            return
        counter = self._counters.get(metric)
        if counter is None:
            counter = self._counters[metric] = self._meter.create_counter(metric)
        counter.add(value, attributes=dict(tags or {}))

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None:
        if self._meter is None:
            return
        histogram = self._histograms.get(metric)
        if histogram is None:
            histogram = self._histograms[metric] = self._meter.create_histogram(metric, unit="ms")
        histogram.record(value_ms, attributes=dict(tags or {}))


def _shared_sinks(settings: Settings) -> _MetricSinks | None:
    global _SHARED_SINKS
    with _BACKEND_LOCK:
        if _SHARED_SINKS is not None:
            return _SHARED_SINKS
        obs = settings.observability
        sinks: list[Any] = []
        if obs.statsd_host:
            sinks.append(_StatsdSink(host=obs.statsd_host, port=obs.statsd_port, prefix=obs.statsd_prefix))
        if obs.otlp_endpoint:
            sinks.append(_OtelSink(endpoint=obs.otlp_endpoint, service_name=obs.service_name))
        if not sinks:
            return None
        _SHARED_SINKS = _MetricSinks(tuple(sinks))
        return _SHARED_SINKS


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime,)):
        return value.isoformat()
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    return str(value)


def _format_number(value: float) -> str:
    formatted = f"{value:.6f}".rstrip("0").rstrip(".")
    return formatted or "0"


__all__ = ["Observability", "get_observability", "reset_observability_cache"]
