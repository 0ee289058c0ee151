"""Graceful asyncio shutdown control, buffered metric aggregation and sampling helpers."""

__version__ = "0.1.0"
__all__ = ["shutdown", "telemetry", "utils"]