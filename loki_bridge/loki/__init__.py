"""Cliente del sink remoto (Grafana Loki)."""

from .client import LokiClient, PUSH_PATH, READY_PATH
from .schemas import LokiPush, LokiStream, LokiStreams

__all__ = [
    "LokiClient",
    "PUSH_PATH",
    "READY_PATH",
    "LokiPush",
    "LokiStream",
    "LokiStreams",
]
