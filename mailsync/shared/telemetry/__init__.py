"""Logging setup, OpenTelemetry wiring and span helpers for sync workflows."""

from mailsync.shared.telemetry.logging import get_logger, setup_logging
from mailsync.shared.telemetry.telemetry import SyncTelemetry, get_telemetry, set_telemetry
from mailsync.shared.telemetry.tracing import add_span_attributes, add_span_event, traced

__all__ = [
    "SyncTelemetry",
    "add_span_attributes",
    "add_span_event",
    "get_logger",
    "get_telemetry",
    "set_telemetry",
    "setup_logging",
    "traced",
]
