"""Contadores Prometheus del pipeline MQTT → Loki."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)

MQTT_MESSAGES_RECEIVED = Counter(
    'esphome2loki_mqtt_messages_received_total',
    'Total MQTT messages received',
    ['status']  # enqueued, decode_error, unknown_topic, discarded
)
MQTT_CONNECTED = Gauge(
    'esphome2loki_mqtt_connected',
    'MQTT transport connection status'
)
QUEUE_DEPTH = Gauge(
    'esphome2loki_queue_depth',
    'Messages waiting between ingestion and batching'
)
LOKI_PUSHES = Counter(
    'esphome2loki_loki_pushes_total',
    'Loki push attempts',
    ['status']  # success, failed
)
BATCH_FLUSHES = Counter(
    'esphome2loki_batch_flushes_total',
    'Batch flushes',
    ['trigger']  # size, timeout
)
VALUES_DROPPED = Counter(
    'esphome2loki_values_dropped_total',
    'Log values never delivered to Loki',
    ['reason']  # retries_exhausted, shutdown
)


def start_metrics_server(port: int) -> bool:
    """Expone /metrics en el puerto dado (0 = deshabilitado)."""
    if port <= 0:
        return False
    start_http_server(port)
    logger.info("[METRICS] Serving Prometheus metrics on :%d", port)
    return True
