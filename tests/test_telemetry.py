import pytest

from lightshut.telemetry import (
    BufferedMetrics,
    MetricCounter,
    MetricKind,
    MetricValue,
    Record,
    flatten_counters,
    flatten_metrics,
)

C = MetricCounter
K = MetricKind


def mv(kind, value):
    return MetricValue(kind, value)


class FakeExporter:
    def __init__(self, fail=False):
        self.counters = []
        self.gauges = []
        self.fail = fail

    def add_counter(self, name, value, attributes):
        self.counters.append((name, value, dict(attributes)))

    def observe_gauge(self, name, value, attributes):
        if self.fail:
            raise RuntimeError("export failed")
        self.gauges.append((name, value, dict(attributes)))


def test_flatten_counters():
    assert flatten_counters([]) == {}
    assert flatten_counters([C.STARTS]) == {C.STARTS.metric_name: 1}
    assert flatten_counters([C.STARTS, C.STARTS]) == {C.STARTS.metric_name: 2}

    buffer = [
        C.STARTS,
        C.UP,
        C.SESSION_BLOCKS,
        C.INCOMING_CONNECTION_ERRORS,
        C.INCOMING_CONNECTION_ERRORS,
        C.INCOMING_CONNECTIONS,
        C.UP,
        C.STARTS,
        C.INCOMING_GET_RECORD,
        C.UP,
        C.INCOMING_PUT_RECORD,
        C.STARTS,
    ]
    assert flatten_counters(buffer) == {
        C.STARTS.metric_name: 3,
        C.UP.metric_name: 1,
        C.SESSION_BLOCKS.metric_name: 1,
        C.INCOMING_CONNECTION_ERRORS.metric_name: 2,
        C.INCOMING_CONNECTIONS.metric_name: 1,
        C.INCOMING_GET_RECORD.metric_name: 1,
        C.INCOMING_PUT_RECORD.metric_name: 1,
    }


def test_flatten_metrics_empty():
    assert flatten_metrics([]) == ({}, {})


def test_flatten_metrics_single():
    m_u64, m_f64 = flatten_metrics([mv(K.BLOCK_CONFIDENCE, 90.0)])
    assert m_u64 == {}
    assert m_f64 == {"avail.light.block.confidence": 90.0}


def test_flatten_metrics_mixed():
    buffer = [
        mv(K.BLOCK_CONFIDENCE, 90.0),
        mv(K.BLOCK_HEIGHT, 1),
        mv(K.BLOCK_CONFIDENCE, 93.0),
    ]
    m_u64, m_f64 = flatten_metrics(buffer)
    assert m_u64 == {"avail.light.block.height": 1}
    assert m_f64 == {"avail.light.block.confidence": 91.5}


def test_flatten_metrics_maximum_and_average():
    buffer = [
        mv(K.BLOCK_CONFIDENCE, 90.0),
        mv(K.BLOCK_HEIGHT, 1),
        mv(K.BLOCK_CONFIDENCE, 93.0),
        mv(K.BLOCK_CONFIDENCE, 93.0),
        mv(K.BLOCK_CONFIDENCE, 99.0),
        mv(K.BLOCK_HEIGHT, 10),
        mv(K.BLOCK_HEIGHT, 1),
    ]
    m_u64, m_f64 = flatten_metrics(buffer)
    assert m_u64 == {"avail.light.block.height": 10}
    assert m_f64 == {"avail.light.block.confidence": 93.75}


def test_flatten_metrics_many_kinds():
    buffer = [
        mv(K.DHT_CONNECTED_PEERS, 90),
        mv(K.DHT_FETCH_DURATION, 1.0),
        mv(K.DHT_PUT_SUCCESS, 10.0),
        mv(K.BLOCK_CONFIDENCE, 99.0),
        mv(K.DHT_FETCH_DURATION, 2.0),
        mv(K.DHT_FETCH_DURATION, 2.1),
        mv(K.BLOCK_HEIGHT, 999),
        mv(K.DHT_CONNECTED_PEERS, 80),
        mv(K.BLOCK_CONFIDENCE, 98.0),
    ]
    m_u64, m_f64 = flatten_metrics(buffer)
    assert m_u64 == {"avail.light.block.height": 999}
    assert len(m_f64) == 4
    assert m_f64["avail.light.dht.put_success"] == 10.0
    assert m_f64["avail.light.dht.fetch_duration"] == 1.7
    assert m_f64["avail.light.block.confidence"] == 98.5
    assert m_f64["avail.light.dht.connected_peers"] == 85.0


def test_to_record():
    assert mv(K.BLOCK_HEIGHT, 7).to_record() == Record("avail.light.block.height", 7, True)
    record = mv(K.DHT_QUERY_TIMEOUT, 3).to_record()
    assert record == Record("avail.light.dht.query_timeout", 3.0, False)
    assert isinstance(record.value, float)


@pytest.mark.parametrize(
    "counter,buffered,last",
    [(C.STARTS, False, False), (C.UP, True, True), (C.SESSION_BLOCKS, True, False)],
)
def test_counter_flags(counter, buffered, last):
    assert counter.is_buffered() is buffered
    assert counter.as_last() is last


def test_counter_allowed_for_external():
    assert MetricCounter.is_allowed(C.STARTS, True) is True
    assert MetricCounter.is_allowed(C.UP, True) is True
    assert MetricCounter.is_allowed(C.SESSION_BLOCKS, True) is False
    assert MetricCounter.is_allowed(C.INCOMING_GET_RECORD, True) is False
    assert [MetricCounter.is_allowed(c, False) for c in MetricCounter] == [True] * len(
        MetricCounter
    )

    exporter = FakeExporter()
    metrics = BufferedMetrics(exporter, external=True)
    for counter in MetricCounter:
        metrics.count(counter)
    metrics.flush()
    assert sorted(n for n, _, _ in exporter.counters) == [
        "avail.light.starts",
        "avail.light.up",
    ]


def test_value_allowed_for_external():
    allowed = {k for k in MetricKind if mv(k, 1.0).is_allowed(True)}
    assert allowed == {K.DHT_FETCHED_PERCENTAGE, K.BLOCK_CONFIDENCE}
    assert all(mv(k, 1.0).is_allowed(False) for k in MetricKind)


def test_counter_names():
    assert flatten_counters([C.STARTS]) == {"avail.light.starts": 1}
    assert mv(K.RPC_CALL_DURATION, 1.0).to_record() == Record(
        "avail.light.rpc.call_duration", 1.0, False
    )


def test_unbuffered_counter_sent_immediately():
    exporter = FakeExporter()
    metrics = BufferedMetrics(exporter, {"role": "light"})
    metrics.count(C.STARTS)
    assert exporter.counters == [("avail.light.starts", 1, {"role": "light"})]


def test_flush_sends_aggregates_and_clears():
    exporter = FakeExporter()
    metrics = BufferedMetrics(exporter)
    metrics.count(C.UP)
    metrics.count(C.UP)
    metrics.count(C.SESSION_BLOCKS)
    metrics.count(C.SESSION_BLOCKS)
    metrics.record(mv(K.BLOCK_HEIGHT, 5))
    metrics.record(mv(K.BLOCK_HEIGHT, 9))
    metrics.record(mv(K.BLOCK_CONFIDENCE, 90.0))
    metrics.record(mv(K.BLOCK_CONFIDENCE, 93.0))
    metrics.flush()

    assert sorted((n, v) for n, v, _ in exporter.counters) == [
        ("avail.light.session_blocks", 2),
        ("avail.light.up", 1),
    ]
    assert sorted((n, v) for n, v, _ in exporter.gauges) == [
        ("avail.light.block.confidence", 91.5),
        ("avail.light.block.height", 9),
    ]

    exporter.counters.clear()
    exporter.gauges.clear()
    metrics.flush()
    assert exporter.counters == []
    assert exporter.gauges == []


def test_external_origin_filters():
    exporter = FakeExporter()
    metrics = BufferedMetrics(exporter, external=True)
    metrics.count(C.SESSION_BLOCKS)
    metrics.count(C.UP)
    metrics.record(mv(K.BLOCK_HEIGHT, 3))
    metrics.record(mv(K.DHT_FETCHED_PERCENTAGE, 50.0))
    metrics.flush()
    assert [(n, v) for n, v, _ in exporter.counters] == [("avail.light.up", 1)]
    assert [(n, v) for n, v, _ in exporter.gauges] == [
        ("avail.light.dht.fetched_percentage", 50.0)
    ]


def test_flush_propagates_export_error():
    metrics = BufferedMetrics(FakeExporter(fail=True))
    metrics.record(mv(K.BLOCK_CONFIDENCE, 1.0))
    with pytest.raises(RuntimeError, match="export failed"):
        metrics.flush()