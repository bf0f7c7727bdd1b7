"""Interfaces abstractas del pipeline.

Desacoplan la ingesta y el batching de las implementaciones concretas
(paho-mqtt, httpx). Los tests usan transportes y sinks en memoria.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence, Union

from .message import LokiValue


class TransportError(Exception):
    """Error de conexión/red del transporte de mensajería."""


@dataclass(frozen=True)
class ConnAck:
    """El broker aceptó (o rechazó) la conexión."""
    success: bool
    reason: str = ""


@dataclass(frozen=True)
class Publish:
    """Mensaje publicado en un topic suscrito."""
    topic: str
    payload: bytes


TransportEvent = Union[ConnAck, Publish]


class IMessageTransport(ABC):
    """Transporte pub/sub con interfaz de polling.

    Implementations:
    - MQTTTransport: paho-mqtt
    """

    @abstractmethod
    def connect(self) -> None:
        """Conexión inicial. Raises TransportError."""

    @abstractmethod
    def reconnect(self) -> None:
        """Reintenta la conexión. Raises TransportError."""

    @abstractmethod
    def subscribe(self, topic: str) -> bool:
        """Suscribe a un topic; False si la suscripción falló."""

    @abstractmethod
    def poll(self, timeout: float = 1.0) -> list[TransportEvent]:
        """Una iteración de red (bloqueante). Raises TransportError."""

    @abstractmethod
    def disconnect(self) -> None:
        pass


class ILogSink(ABC):
    """Destino remoto de líneas de log agrupadas por label.

    Implementations:
    - LokiClient: push HTTP a Grafana Loki
    """

    @abstractmethod
    async def push(self, label: str, values: Sequence[LokiValue]) -> bool:
        """Entrega un lote completo; True si se entregó, False si falló."""

    async def is_ready(self) -> bool:
        """Comprobación de disponibilidad; por defecto siempre lista."""
        return True

    async def aclose(self) -> None:
        pass
