# Alert formatting and minute-aligned delivery
from .dispatcher import AlertDispatcher, next_minute_boundary
from .formatter import format_alert, build_payload, STRUCTURED, HUMAN

__all__ = [
    "AlertDispatcher",
    "next_minute_boundary",
    "format_alert",
    "build_payload",
    "STRUCTURED",
    "HUMAN",
]
