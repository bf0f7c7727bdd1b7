"""Ingesta MQTT del bridge.

Este módulo proporciona:
- Router estático topic → dispositivo
- Transporte paho-mqtt con interfaz de polling
- Receptor que convierte publish events en mensajes encolados

Estructura modular:
- topic_router.py: Tabla topic → Device
- transport.py: Cliente paho-mqtt
- backpressure.py: Cola acotada entre ingesta y batching
- receiver.py: Tarea de ingesta principal
"""

from .backpressure import BackpressureConfig, create_message_queue
from .receiver import MQTTIngestReceiver, SubscriptionError
from .topic_router import DuplicateTopicError, TopicRouter, UnknownTopicError
from .transport import MQTTTransport

__all__ = [
    "BackpressureConfig",
    "create_message_queue",
    "MQTTIngestReceiver",
    "SubscriptionError",
    "DuplicateTopicError",
    "TopicRouter",
    "UnknownTopicError",
    "MQTTTransport",
]
