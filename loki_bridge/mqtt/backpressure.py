"""Cola acotada entre la ingesta MQTT y el batcher.

La capacidad de la cola es el único mecanismo de backpressure: con la
cola llena la tarea de ingesta se bloquea y deja de leer del broker.
La capacidad escala con el número de dispositivos configurados.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

from ..core.domain import InboundMessage

logger = logging.getLogger(__name__)

DEFAULT_PER_DEVICE_CAPACITY = 512


@dataclass
class BackpressureConfig:
    """Configuración de la cola."""
    per_device_capacity: int = DEFAULT_PER_DEVICE_CAPACITY

    @classmethod
    def from_env(cls) -> "BackpressureConfig":
        return cls(
            per_device_capacity=int(
                os.getenv("ESPHOME2LOKI_QUEUE_PER_DEVICE", str(DEFAULT_PER_DEVICE_CAPACITY))
            ),
        )

    def capacity(self, device_count: int) -> int:
        return max(1, self.per_device_capacity * device_count)


def create_message_queue(
    device_count: int,
    config: BackpressureConfig | None = None,
) -> asyncio.Queue[InboundMessage]:
    """Crea la cola FIFO acotada (512 × dispositivos por defecto)."""
    config = config or BackpressureConfig.from_env()
    capacity = config.capacity(device_count)
    logger.info("[QUEUE] Message queue capacity=%d (devices=%d)", capacity, device_count)
    return asyncio.Queue(maxsize=capacity)
