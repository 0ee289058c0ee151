# lightshut

Small building blocks for long-running asyncio services:

- **`lightshut.shutdown`**: a `Controller` for graceful shutdowns. A triggered
  shutdown can cancel running work. Clean-up work can hold back the shutdown's
  completion until it finishes. The shutdown reason can be read afterwards.
- **`lightshut.telemetry`**: metric counters and values that are buffered and
  then aggregated into counts, maximums and averages on each flush.
- **`lightshut.utils`**: sampling helpers. They compute confidence from the
  number of verified cells, check whether cells can be reconstructed, and find
  positions that no cell covers.

The package has no dependencies beyond the standard library.

## Installation

```
pip install lightshut
```

## Graceful shutdown

```python
import asyncio
from lightshut.shutdown import Controller, ShutdownCancelled

async def main():
    controller = Controller()

    async def worker():
        await asyncio.sleep(3600)

    # Cancelled as soon as a shutdown is triggered.
    task = asyncio.create_task(controller.with_cancel(worker()))

    # The shutdown cannot complete while this clean-up runs.
    cleanup = asyncio.create_task(controller.with_delay(asyncio.sleep(0.1)))

    controller.trigger_shutdown("user requested stop")

    try:
        await task
    except ShutdownCancelled as cancelled:
        print("worker stopped:", cancelled.reason)

    reason = await controller.completed_shutdown()
    print("shutdown complete:", reason)

asyncio.run(main())
```

What each piece does:

- `Controller.trigger_shutdown(reason)` starts the shutdown. Calling it a
  second time raises `ShutdownHasStarted`, which carries the original `reason`
  and the `ignored` one.
- `is_shutdown_triggered()`, `is_shutdown_completed()` and `shutdown_reason()`
  report the current state. `shutdown_reason()` returns `None` until the
  shutdown has been triggered.
- `await controller.triggered_shutdown()` waits until the shutdown starts and
  returns its reason. The `Signal` it returns also offers `with_cancel(...)`.
- `controller.with_cancel(awaitable)` runs the awaitable and returns its value.
  If the shutdown is triggered first, the awaitable is cancelled and
  `ShutdownCancelled` is raised with the reason.
- `await controller.completed_shutdown()` waits until the shutdown has been
  triggered and every delay has been released.
- `controller.delay_token()` returns a `DelayToken`. Each `clone()` is a
  separate delay, and every copy must be released. A token is released by
  `release()`, by leaving a `with` block, or when it is garbage collected.
  `with_future(awaitable)` releases it once the awaitable finishes. After the
  shutdown has completed, `delay_token()` and `with_delay(...)` raise
  `ShutdownHasCompleted`.
- `controller.trigger_token(reason)` returns a `TriggerToken`. Its clones share
  one reason. Calling `trigger()` on any copy starts the shutdown, and so does
  the copy being garbage collected. `forget()` disarms a copy so that it never
  triggers. `with_future(awaitable)`, and likewise
  `controller.with_trigger(reason, awaitable)`, triggers once the awaitable
  finishes, whether it succeeds or fails.

A `Controller` can be used from several event loops and threads. Waiters are
woken on their own loop.

## Metrics

```python
from lightshut.telemetry import (
    MetricCounter, MetricKind, MetricValue, flatten_counters, flatten_metrics,
)

counts = flatten_counters([MetricCounter.STARTS, MetricCounter.UP, MetricCounter.UP])
# {"avail.light.starts": 1, "avail.light.up": 1}

maximums, averages = flatten_metrics([
    MetricValue(MetricKind.BLOCK_CONFIDENCE, 90.0),
    MetricValue(MetricKind.BLOCK_CONFIDENCE, 93.0),
    MetricValue(MetricKind.BLOCK_HEIGHT, 7),
])
# maximums == {"avail.light.block.height": 7}
# averages == {"avail.light.block.confidence": 91.5}
```

- `flatten_counters` counts how many times each counter name appears.
  `MetricCounter.UP` is counted at most once per flush.
- `flatten_metrics` keeps the maximum, as an integer, for
  `MetricKind.BLOCK_HEIGHT` and the average for every other kind.
- `BufferedMetrics(exporter, attributes=None, external=False)` buffers counters
  through `count()` and values through `record()`. When `external` is true, it
  drops everything external peers may not report. The only counters kept are
  `STARTS` and `UP`, and the only values kept are `DHT_FETCHED_PERCENTAGE` and
  `BLOCK_CONFIDENCE`. `STARTS` is not buffered and goes straight to the
  exporter. `flush()` aggregates the buffers, clears them, and hands the
  results to the exporter.

The exporter is any object with these two methods:

```python
def add_counter(self, name: str, value: int, attributes: Mapping[str, str]) -> None: ...
def observe_gauge(self, name: str, value: float, attributes: Mapping[str, str]) -> None: ...
```

## Sampling helpers

```python
from lightshut.utils import Cell, Position, calculate_confidence, can_reconstruct, diff_positions

calculate_confidence(3)   # 87.5
diff_positions([Position(0, 0), Position(1, 1)], [Cell(Position(0, 0))])
# [Position(row=1, col=1)]
can_reconstruct(1, [0, 1], [Cell(Position(0, 0)), Cell(Position(0, 1))])   # True
```

`calculate_confidence` raises `ValueError` for a negative count.

## What this package does not do

- It does not send metrics anywhere by itself. It has no OpenTelemetry or other
  collector exporter, so you supply the exporter object that `BufferedMetrics`
  calls.
- It does not fetch, sample or verify block data over a network. The helpers in
  `lightshut.utils` work only on the `Cell` and `Position` values you pass in.
- It has no command-line program or long-running service of its own.

## Running the tests

```
pip install -e ".[test]"
pytest
```