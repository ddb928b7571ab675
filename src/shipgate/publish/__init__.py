"""Run finalization: report publishing and notifications."""

from shipgate.publish.notifier import (
    CallbackNotifier,
    CompositeNotifier,
    ConsoleNotifier,
    Notifier,
    format_status,
)
from shipgate.publish.sink import PublishedReport, PublishSink, ReportSpec

__all__ = [
    "CallbackNotifier",
    "CompositeNotifier",
    "ConsoleNotifier",
    "Notifier",
    "PublishSink",
    "PublishedReport",
    "ReportSpec",
    "format_status",
]
