"""Modelos de dominio del pipeline de ingesta."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

# Par [timestamp_ns como string decimal, línea de log], formato de Loki.
LokiValue = List[str]


@dataclass(frozen=True)
class Device:
    """Dispositivo lógico: un topic MQTT → un label de Loki."""
    label: str
    topic: str


@dataclass(frozen=True)
class InboundMessage:
    """Mensaje recibido por MQTT, estampado en el momento de la ingesta.

    Este es el contrato que viaja por la cola:
    MQTT → IngestionTask → cola acotada → BatchDispatcher → Loki
    """
    timestamp: int  # nanosegundos desde epoch
    payload: str
    device: Device

    @property
    def label(self) -> str:
        return self.device.label

    def to_loki_value(self) -> LokiValue:
        """Convierte al par [ts, texto] que espera el push de Loki."""
        return [str(self.timestamp), self.payload]
