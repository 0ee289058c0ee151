"""Metric counters and values, buffered and aggregated before export."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from functools import reduce
from operator import add
from typing import Iterable, Mapping, Protocol


class MetricCounter(Enum):
    """Counters reported by the client, valued by their metric name."""

    STARTS = "avail.light.starts"
    UP = "avail.light.up"
    SESSION_BLOCKS = "avail.light.session_blocks"
    OUTGOING_CONNECTION_ERRORS = "avail.light.outgoing_connection_errors"
    INCOMING_CONNECTION_ERRORS = "avail.light.incoming_connection_errors"
    INCOMING_CONNECTIONS = "avail.light.incoming_connections"
    ESTABLISHED_CONNECTIONS = "avail.light.established_connections"
    INCOMING_PUT_RECORD = "avail.light.incoming_put_record"
    INCOMING_GET_RECORD = "avail.light.incoming_get_record"

    @property
    def metric_name(self) -> str:
        return self.value

    def is_buffered(self) -> bool:
        """Whether the counter waits for a flush instead of being sent at once."""
        return self is not MetricCounter.STARTS

    def as_last(self) -> bool:
        """Whether repeated occurrences in one flush count only once."""
        return self is MetricCounter.UP

    def is_allowed(self, external: bool) -> bool:
        """External peers only report starts and liveness."""
        if external:
            return self in (MetricCounter.STARTS, MetricCounter.UP)
        return True


class MetricKind(Enum):
    """Kinds of recorded values: metric name and whether the maximum is kept."""

    BLOCK_HEIGHT = ("avail.light.block.height", True)
    BLOCK_CONFIDENCE = ("avail.light.block.confidence", False)
    BLOCK_CONFIDENCE_THRESHOLD = ("avail.light.block.confidence_threshold", False)
    BLOCK_PROCESSING_DELAY = ("avail.light.block.processing_delay", False)
    DHT_REPLICATION_FACTOR = ("avail.light.dht.replication_factor", False)
    DHT_FETCHED = ("avail.light.dht.fetched", False)
    DHT_FETCHED_PERCENTAGE = ("avail.light.dht.fetched_percentage", False)
    DHT_FETCH_DURATION = ("avail.light.dht.fetch_duration", False)
    DHT_PUT_DURATION = ("avail.light.dht.put_duration", False)
    DHT_PUT_SUCCESS = ("avail.light.dht.put_success", False)
    DHT_CONNECTED_PEERS = ("avail.light.dht.connected_peers", False)
    DHT_QUERY_TIMEOUT = ("avail.light.dht.query_timeout", False)
    DHT_PING_LATENCY = ("avail.light.dht.ping_latency", False)
    RPC_FETCHED = ("avail.light.rpc.fetched", False)
    RPC_FETCH_DURATION = ("avail.light.rpc.fetch_duration", False)
    RPC_CALL_DURATION = ("avail.light.rpc.call_duration", False)
    CRAWL_CELLS_SUCCESS_RATE = ("avail.light.crawl.cells_success_rate", False)
    CRAWL_ROWS_SUCCESS_RATE = ("avail.light.crawl.rows_success_rate", False)
    CRAWL_BLOCK_DELAY = ("avail.light.crawl.block_delay", False)

    @property
    def metric_name(self) -> str:
        return self.value[0]

    @property
    def keeps_maximum(self) -> bool:
        return self.value[1]


@dataclass(frozen=True)
class Record:
    """A value ready for aggregation: maximum of integers or average of floats."""

    name: str
    value: float
    is_max: bool


@dataclass(frozen=True)
class MetricValue:
    """A single measurement of some metric kind."""

    kind: MetricKind
    value: float

    @property
    def metric_name(self) -> str:
        return self.kind.metric_name

    def is_allowed(self, external: bool) -> bool:
        """External peers only report fetch percentage and block confidence."""
        if external:
            return self.kind in (
                MetricKind.DHT_FETCHED_PERCENTAGE,
                MetricKind.BLOCK_CONFIDENCE,
            )
        return True

    def to_record(self) -> Record:
        if self.kind.keeps_maximum:
            return Record(self.metric_name, int(self.value), True)
        return Record(self.metric_name, float(self.value), False)


def flatten_counters(buffer: Iterable[MetricCounter]) -> dict[str, int]:
    """Count occurrences per counter name; 'as last' counters count once."""
    result: dict[str, int] = {}
    for counter in buffer:
        name = counter.metric_name
        if name not in result:
            result[name] = 1
        elif not counter.as_last():
            result[name] += 1
    return result


def flatten_metrics(
    buffer: Iterable[MetricValue],
) -> tuple[dict[str, int], dict[str, float]]:
    """Aggregate values into per-name maximums (integers) and averages (floats)."""
    maximums: dict[str, list[int]] = {}
    averages: dict[str, list[float]] = {}
    for value in buffer:
        record = value.to_record()
        if record.is_max:
            maximums.setdefault(record.name, []).append(int(record.value))
        else:
            averages.setdefault(record.name, []).append(float(record.value))

    u64_metrics = {name: max(values, default=0) for name, values in maximums.items()}
    f64_metrics = {
        name: reduce(add, values, 0.0) / len(values) for name, values in averages.items()
    }
    return u64_metrics, f64_metrics


class _Exporter(Protocol):
    def add_counter(self, name: str, value: int, attributes: Mapping[str, str]) -> None: ...

    def observe_gauge(
        self, name: str, value: float, attributes: Mapping[str, str]
    ) -> None: ...


class BufferedMetrics:
    """Buffers counters and values and sends their aggregates on flush."""

    def __init__(
        self,
        exporter: _Exporter,
        attributes: Mapping[str, str] | None = None,
        external: bool = False,
    ) -> None:
        self._exporter = exporter
        self._attributes = dict(attributes or {})
        self._external = external
        self._lock = threading.Lock()
        self._counters: list[MetricCounter] = []
        self._metrics: list[MetricValue] = []

    def count(self, counter: MetricCounter) -> None:
        """Buffer an allowed counter, or send unbuffered counters at once."""
        if not counter.is_allowed(self._external):
            return
        if not counter.is_buffered():
            self._exporter.add_counter(counter.metric_name, 1, self._attributes)
            return
        with self._lock:
            self._counters.append(counter)

    def record(self, value: MetricValue) -> None:
        """Buffer a value if it is allowed for this origin."""
        if not value.is_allowed(self._external):
            return
        with self._lock:
            self._metrics.append(value)

    def flush(self) -> None:
        """Aggregate the buffers, clear them and send the results."""
        with self._lock:
            counters = flatten_counters(self._counters)
            self._counters.clear()
            metrics_u64, metrics_f64 = flatten_metrics(self._metrics)
            self._metrics.clear()

        for name, count in counters.items():
            self._exporter.add_counter(name, count, self._attributes)
        for name, maximum in metrics_u64.items():
            self._exporter.observe_gauge(name, maximum, self._attributes)
        for name, average in metrics_f64.items():
            self._exporter.observe_gauge(name, average, self._attributes)