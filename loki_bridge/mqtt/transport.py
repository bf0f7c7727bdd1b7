"""Transporte MQTT basado en paho-mqtt.

Responsabilidades:
- Conexión/reconexión al broker
- Suscripción a topics (QoS 0)
- Una iteración de red por `poll()`, devolviendo los eventos recibidos

El bucle de red NO corre en un thread propio de paho (`loop_start`):
la tarea de ingesta llama a `poll()` explícitamente. Mientras la tarea
está bloqueada en una cola llena no se lee el socket, y el broker deja
de entregar: ese es el mecanismo de backpressure.
"""

from __future__ import annotations

import logging
import ssl
from typing import Optional

import paho.mqtt.client as mqtt

from common.config import MQTTSettings

from ..core.domain import ConnAck, IMessageTransport, Publish, TransportError, TransportEvent

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 5


class MQTTTransport(IMessageTransport):
    """Cliente paho con interfaz de polling."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "esphome2loki",
        use_tls: bool = False,
        keepalive: int = KEEPALIVE_SECONDS,
    ):
        self.host = host
        self.port = port
        self.keepalive = keepalive

        self._pending: list[TransportEvent] = []
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
            clean_session=False,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        if username:
            self._client.username_pw_set(username, password or None)
        if use_tls:
            # Certificados raíz del sistema operativo
            self._client.tls_set_context(ssl.create_default_context())

    @classmethod
    def from_settings(cls, settings: MQTTSettings) -> "MQTTTransport":
        return cls(
            host=settings.address,
            port=settings.port,
            username=settings.username or None,
            password=settings.password or None,
            client_id=settings.client_id,
            use_tls=settings.use_tls,
        )

    def connect(self) -> None:
        """Conexión TCP inicial (bloqueante)."""
        logger.info("[MQTT] Connecting to %s:%d", self.host, self.port)
        try:
            self._client.connect(self.host, self.port, keepalive=self.keepalive)
        except (OSError, ValueError) as e:
            raise TransportError(f"connect to {self.host}:{self.port} failed: {e}") from e

    def reconnect(self) -> None:
        try:
            self._client.reconnect()
        except (OSError, ValueError) as e:
            raise TransportError(f"reconnect to {self.host}:{self.port} failed: {e}") from e

    def subscribe(self, topic: str) -> bool:
        """Suscribe a un topic con QoS 0 (at-most-once)."""
        try:
            result, _mid = self._client.subscribe(topic, qos=0)
        except ValueError as e:
            # paho valida el filtro antes de enviar
            logger.error("[MQTT] Invalid subscription filter %r: %s", topic, e)
            return False
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error("[MQTT] Subscription to %s failed: %s", topic, mqtt.error_string(result))
            return False
        return True

    def poll(self, timeout: float = 1.0) -> list[TransportEvent]:
        """Ejecuta una iteración de red y devuelve los eventos recogidos.

        Raises:
            TransportError: si paho reporta un error de conexión
        """
        try:
            rc = self._client.loop(timeout=timeout)
        except OSError as e:
            self._pending.clear()
            raise TransportError(str(e)) from e

        events, self._pending = self._pending, []
        if rc != mqtt.MQTT_ERR_SUCCESS:
            # Los eventos recibidos antes del error siguen siendo válidos
            if events:
                return events
            raise TransportError(mqtt.error_string(rc))
        return events

    def disconnect(self) -> None:
        try:
            self._client.disconnect()
        except OSError as e:
            logger.warning("[MQTT] Disconnect error: %s", e)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._pending.append(
            ConnAck(success=not reason_code.is_failure, reason=str(reason_code))
        )

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        logger.warning("[MQTT] Disconnected (%s)", reason_code)

    def _on_message(self, client, userdata, msg):
        self._pending.append(Publish(topic=msg.topic, payload=msg.payload))
