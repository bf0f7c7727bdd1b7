"""Tarea de ingesta MQTT.

Flujo:
  broker MQTT (topics de dispositivos)
  → MQTTIngestReceiver (este archivo)
  → cola acotada
  → BatchDispatcher
  → Loki

La tarea es dueña de la conexión: hace polling del transporte en un
thread, y procesa los eventos recogidos en el event loop. Nunca espera
al sink; solo se bloquea si la cola está llena.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from ..core.domain import (
    ConnAck,
    IMessageTransport,
    InboundMessage,
    Publish,
    TransportError,
    TransportEvent,
)
from ..core.shutdown import ShutdownCoordinator
from ..metrics import MQTT_CONNECTED, MQTT_MESSAGES_RECEIVED, QUEUE_DEPTH
from .receiver_stats import ReceiverStats
from .topic_router import TopicRouter, UnknownTopicError
from .validators import decode_payload

logger = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT = 1.0
DEFAULT_ERROR_DELAY = 1.0


class SubscriptionError(Exception):
    """Ninguna suscripción tuvo éxito: el pipeline no puede arrancar."""


class MQTTIngestReceiver:
    """Receptor MQTT: eventos publish → InboundMessage → cola.

    Uso:
        receiver = MQTTIngestReceiver(transport, router, queue, shutdown)
        await receiver.start()   # SubscriptionError si no hay ningún topic
        await receiver.run()     # hasta la señal de apagado
    """

    def __init__(
        self,
        transport: IMessageTransport,
        router: TopicRouter,
        queue: asyncio.Queue[InboundMessage],
        shutdown: ShutdownCoordinator,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        error_delay: float = DEFAULT_ERROR_DELAY,
    ):
        self._transport = transport
        self._router = router
        self._queue = queue
        self._shutdown = shutdown
        self._poll_timeout = poll_timeout
        self._error_delay = error_delay

        self._subscribed: list[str] = []
        self._running = False
        self._connected = False
        self._stats = ReceiverStats()

    async def start(self) -> list[str]:
        """Conecta y suscribe todos los topics del router.

        Un broker inalcanzable es un error transitorio: la conexión se
        reintenta cada `error_delay` segundos hasta lograrla o hasta el
        apagado (en ese caso devuelve una lista vacía).

        Raises:
            SubscriptionError: si el broker rechazó todas las suscripciones
        """
        while not await self._connect():
            if await self._sleep_unless_shutdown(self._error_delay):
                logger.info("[MQTT] Shutdown before the broker was reachable")
                return []
        return self.subscribe_all()

    async def _connect(self) -> bool:
        try:
            await asyncio.to_thread(self._transport.connect)
            return True
        except TransportError as e:
            self._stats.transport_errors += 1
            logger.error("[MQTT] Connection failed, retrying in %.1fs: %s", self._error_delay, e)
            return False

    def subscribe_all(self) -> list[str]:
        self._subscribed = []
        for topic in self._router.topics:
            logger.debug("[MQTT] Subscribing to topic %s", topic)
            if self._transport.subscribe(topic):
                self._subscribed.append(topic)
                logger.debug("[MQTT] Subscription to %s succeeded", topic)
            else:
                logger.error("[MQTT] Subscription to %s failed", topic)

        if not self._subscribed:
            raise SubscriptionError("Couldn't subscribe to any topic")

        failed = len(self._router) - len(self._subscribed)
        if failed:
            logger.warning(
                "[MQTT] Running with reduced coverage: %d/%d topics subscribed",
                len(self._subscribed), len(self._router),
            )
        return list(self._subscribed)

    async def run(self) -> None:
        """Bucle principal; termina solo con la señal de apagado."""
        self._running = True
        logger.info("[MQTT] Ingestion started (%d topics)", len(self._subscribed))
        try:
            while not self._shutdown.is_set:
                try:
                    events = await asyncio.to_thread(self._transport.poll, self._poll_timeout)
                except TransportError as e:
                    await self._handle_transport_error(e)
                    continue

                for event in events:
                    if self._shutdown.is_set:
                        break
                    await self._handle_event(event)
        finally:
            self._running = False
            self._set_connected(False)
            logger.info("[MQTT] Ingestion stopped. %s", self._stats)

    async def _handle_event(self, event: TransportEvent) -> None:
        if isinstance(event, ConnAck):
            if event.success:
                self._stats.connects += 1
                self._set_connected(True)
                logger.info("[MQTT] Connected to MQTT broker.")
            else:
                self._set_connected(False)
                logger.error("[MQTT] Connection refused by broker: %s", event.reason)
        elif isinstance(event, Publish):
            await self._handle_publish(event)

    async def _handle_publish(self, event: Publish) -> None:
        self._stats.received += 1
        self._stats.last_message_at = time.time()

        try:
            device = self._router.resolve(event.topic)
        except UnknownTopicError as e:
            # No debería ocurrir: solo recibimos topics suscritos
            logger.error("[MQTT] Dropping message: %s", e)
            self._stats.dropped_unknown += 1
            MQTT_MESSAGES_RECEIVED.labels(status='unknown_topic').inc()
            return

        timestamp = time.time_ns()
        decoded = decode_payload(event.payload, event.topic)
        if not decoded.valid:
            self._stats.dropped_decode += 1
            MQTT_MESSAGES_RECEIVED.labels(status='decode_error').inc()
            return

        message = InboundMessage(timestamp=timestamp, payload=decoded.text, device=device)
        if await self._enqueue(message):
            self._stats.enqueued += 1
            MQTT_MESSAGES_RECEIVED.labels(status='enqueued').inc()
            QUEUE_DEPTH.set(self._queue.qsize())
        else:
            self._stats.discarded_on_shutdown += 1
            MQTT_MESSAGES_RECEIVED.labels(status='discarded').inc()

    async def _enqueue(self, message: InboundMessage) -> bool:
        """Encola el mensaje; bloquea si la cola está llena.

        Returns:
            False si llegó la señal de apagado antes de haber espacio
        """
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.debug("[MQTT] Queue full (%d), waiting for batcher", self._queue.maxsize)

        put = asyncio.ensure_future(self._queue.put(message))
        stop = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait({put, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not put.done():
                put.cancel()
        return put.done() and not put.cancelled()

    async def _handle_transport_error(self, error: TransportError) -> None:
        self._stats.transport_errors += 1
        self._set_connected(False)
        logger.error("[MQTT] Connection error encountered: %s", error)

        if await self._sleep_unless_shutdown(self._error_delay):
            return
        try:
            await asyncio.to_thread(self._transport.reconnect)
        except TransportError as e:
            logger.debug("[MQTT] Reconnect failed: %s", e)

    async def _sleep_unless_shutdown(self, delay: float) -> bool:
        """Espera `delay` segundos. Returns True si llegó el apagado."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def _set_connected(self, connected: bool) -> None:
        self._connected = connected
        MQTT_CONNECTED.set(1 if connected else 0)

    @property
    def subscribed_topics(self) -> list[str]:
        return list(self._subscribed)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "connected": self._connected,
            "subscribed_topics": len(self._subscribed),
            "queue_depth": self._queue.qsize(),
            "queue_max": self._queue.maxsize,
            **self._stats.to_dict(),
        }

    def health_check(self) -> dict:
        """Health check para monitoreo."""
        last = self._stats.last_message_at
        return {
            "healthy": self._running and self._connected,
            "running": self._running,
            "connected": self._connected,
            "messages_enqueued": self._stats.enqueued,
            "transport_errors": self._stats.transport_errors,
            "last_message_age_seconds": time.time() - last if last > 0 else None,
        }
