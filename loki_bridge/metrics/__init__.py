"""Métricas Prometheus del bridge."""

from .prometheus import (
    BATCH_FLUSHES,
    LOKI_PUSHES,
    MQTT_CONNECTED,
    MQTT_MESSAGES_RECEIVED,
    QUEUE_DEPTH,
    VALUES_DROPPED,
    start_metrics_server,
)

__all__ = [
    "BATCH_FLUSHES",
    "LOKI_PUSHES",
    "MQTT_CONNECTED",
    "MQTT_MESSAGES_RECEIVED",
    "QUEUE_DEPTH",
    "VALUES_DROPPED",
    "start_metrics_server",
]
