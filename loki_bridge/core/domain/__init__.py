from .interfaces import (
    ConnAck,
    ILogSink,
    IMessageTransport,
    Publish,
    TransportError,
    TransportEvent,
)
from .message import Device, InboundMessage, LokiValue

__all__ = [
    "ConnAck",
    "Device",
    "ILogSink",
    "IMessageTransport",
    "InboundMessage",
    "LokiValue",
    "Publish",
    "TransportError",
    "TransportEvent",
]
