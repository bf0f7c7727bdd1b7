"""Supervisor del bridge MQTT → Loki.

Arma el pipeline (router, cola, transporte, sink, tareas), lanza la
tarea de ingesta y la de batching, y espera a que ambas terminen.
Si una de las dos termina por cualquier motivo se dispara el apagado
para que la otra también termine.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from common.config import BridgeSettings

from .core.domain import ILogSink, IMessageTransport
from .core.shutdown import ShutdownCoordinator, install_signal_handlers
from .dispatch import BatchDispatcher, RetryExecutor
from .loki import LokiClient
from .metrics import start_metrics_server
from .mqtt import (
    MQTTIngestReceiver,
    MQTTTransport,
    SubscriptionError,
    TopicRouter,
    create_message_queue,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1

READY_CHECK_TIMEOUT = 3.0


class BridgeApp:
    """Pipeline completo: MQTT → cola acotada → lotes → Loki."""

    def __init__(
        self,
        settings: BridgeSettings,
        transport: Optional[IMessageTransport] = None,
        sink: Optional[ILogSink] = None,
        shutdown: Optional[ShutdownCoordinator] = None,
        retry: Optional[RetryExecutor] = None,
    ):
        self._settings = settings
        self.router = TopicRouter.from_devices(settings.device)
        self.queue = create_message_queue(len(self.router))
        self.shutdown = shutdown or ShutdownCoordinator()

        self._transport = transport or MQTTTransport.from_settings(settings.mqtt)
        self._sink = sink or LokiClient.from_settings(settings.loki)

        self.receiver = MQTTIngestReceiver(
            transport=self._transport,
            router=self.router,
            queue=self.queue,
            shutdown=self.shutdown,
        )
        self.dispatcher = BatchDispatcher(
            queue=self.queue,
            sink=self._sink,
            shutdown=self.shutdown,
            batch_size=settings.loki.batch_size,
            batch_timeout=float(settings.loki.batch_timeout_seconds),
            retry=retry,
        )

    async def run(self) -> int:
        """Ejecuta el pipeline hasta el apagado.

        Returns:
            Código de salida (EXIT_STARTUP_FAILURE si no hubo suscripciones)
        """
        try:
            try:
                await self.receiver.start()
            except SubscriptionError as e:
                logger.error("[MAIN] %s. Quitting...", e)
                return EXIT_STARTUP_FAILURE

            if self.shutdown.is_set:
                return EXIT_OK

            # informativo, no retrasa la ingesta
            ready_check = asyncio.create_task(self._check_sink_ready(), name="loki-ready")
            tasks = [
                asyncio.create_task(self.receiver.run(), name="mqtt-ingest"),
                asyncio.create_task(self.dispatcher.run(), name="batch-dispatch"),
            ]
            for task in tasks:
                task.add_done_callback(self._on_task_done)

            await asyncio.gather(*tasks, return_exceptions=True)
            ready_check.cancel()
            await asyncio.gather(ready_check, return_exceptions=True)
            return EXIT_OK
        finally:
            await asyncio.to_thread(self._transport.disconnect)
            await self._sink.aclose()
            logger.info("Goodbye!")

    async def _check_sink_ready(self) -> None:
        try:
            ready = await asyncio.wait_for(self._sink.is_ready(), timeout=READY_CHECK_TIMEOUT)
        except asyncio.TimeoutError:
            ready = False
        if ready:
            logger.info("[MAIN] Loki is ready")
        else:
            logger.warning("[MAIN] Loki is not ready yet, pushes will be retried per batch")

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("[MAIN] Task %s was cancelled", task.get_name())
        elif task.exception() is not None:
            logger.error(
                "[MAIN] Task %s failed: %r", task.get_name(), task.exception(),
                exc_info=task.exception(),
            )
        # Una tarea terminada (upstream cerrado, fallo) equivale a un apagado
        self.shutdown.trigger(f"{task.get_name()} finished")

    @property
    def stats(self) -> dict:
        return {
            "receiver": self.receiver.stats,
            "dispatcher": self.dispatcher.stats,
        }


async def run_bridge(settings: BridgeSettings) -> int:
    """Punto de entrada async: señales, métricas y pipeline."""
    app = BridgeApp(settings)
    install_signal_handlers(app.shutdown)
    start_metrics_server(settings.system.metrics_port)
    return await app.run()
