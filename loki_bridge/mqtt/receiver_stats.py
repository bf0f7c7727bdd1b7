"""Contadores de la tarea de ingesta MQTT, expuestos por `stats` y `health_check`."""

from __future__ import annotations


class ReceiverStats:
    """Estadísticas del receptor MQTT."""

    def __init__(self):
        self.received = 0
        self.enqueued = 0
        self.dropped_decode = 0
        self.dropped_unknown = 0
        self.discarded_on_shutdown = 0
        self.transport_errors = 0
        self.connects = 0
        self.last_message_at: float = 0

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} enqueued={self.enqueued} "
            f"dropped_decode={self.dropped_decode} dropped_unknown={self.dropped_unknown} "
            f"transport_errors={self.transport_errors}"
        )

    def to_dict(self) -> dict:
        """Convert stats to dictionary."""
        return {
            "received": self.received,
            "enqueued": self.enqueued,
            "dropped_decode": self.dropped_decode,
            "dropped_unknown": self.dropped_unknown,
            "discarded_on_shutdown": self.discarded_on_shutdown,
            "transport_errors": self.transport_errors,
            "connects": self.connects,
            "last_message_at": self.last_message_at,
        }
