"""Delivery sinks: the strategies that hand a due prompt to the user."""
from sinks.base import DeliveryError, DeliverySink, SinkMetrics
from sinks.file_sink import FileDropSink
from sinks.session_sink import SessionInjectionSink, sanitize_for_injection
from sinks.factory import create_sink

__all__ = [
    "DeliveryError", "DeliverySink", "SinkMetrics",
    "FileDropSink", "SessionInjectionSink", "sanitize_for_injection",
    "create_sink",
]
