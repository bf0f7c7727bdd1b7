"""Router estático topic MQTT → dispositivo.

Se construye una sola vez al arrancar y queda de solo lectura;
la tarea de ingesta lo comparte sin sincronización.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from common.config import ConfigError, DeviceSettings

from ..core.domain import Device

logger = logging.getLogger(__name__)


class DuplicateTopicError(ConfigError):
    """Dos dispositivos declaran el mismo topic."""

    def __init__(self, topic: str, first: str, second: str):
        self.topic = topic
        super().__init__(
            f"topic '{topic}' is declared by both '{first}' and '{second}'"
        )


class UnknownTopicError(LookupError):
    """Llegó un mensaje para un topic nunca suscrito (error de consistencia)."""

    def __init__(self, topic: str):
        self.topic = topic
        super().__init__(f"no device registered for topic '{topic}'")


class TopicRouter:
    """Tabla inmutable topic → Device."""

    def __init__(self, routes: Mapping[str, Device]):
        self._routes: Mapping[str, Device] = MappingProxyType(dict(routes))

    @classmethod
    def from_devices(cls, devices: Iterable[Device | DeviceSettings]) -> "TopicRouter":
        routes: dict[str, Device] = {}
        for dev in devices:
            device = dev if isinstance(dev, Device) else Device(label=dev.label, topic=dev.topic)
            existing = routes.get(device.topic)
            if existing is not None:
                raise DuplicateTopicError(device.topic, existing.label, device.label)
            routes[device.topic] = device
        logger.debug("[ROUTER] %d topics registered", len(routes))
        return cls(routes)

    def resolve(self, topic: str) -> Device:
        try:
            return self._routes[topic]
        except KeyError:
            raise UnknownTopicError(topic) from None

    @property
    def topics(self) -> list[str]:
        return list(self._routes)

    @property
    def devices(self) -> list[Device]:
        return list(self._routes.values())

    def __contains__(self, topic: object) -> bool:
        return topic in self._routes

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._routes)
