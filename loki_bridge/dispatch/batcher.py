"""Tarea de batching/dispatch: cola → lotes por label → Loki.

Acumula mensajes en un lote en memoria agrupado por label y lo envía
al sink cuando:
- el contador alcanza `batch_size` (flush inmediato), o
- dispara el timer periódico de `batch_timeout` y el lote no está vacío.

Cada iteración espera al primero de tres eventos (mensaje, tick,
apagado) y atiende solo uno. Si varios están listos a la vez la
prioridad es: apagado, mensaje, tick. Los waiters pendientes se
conservan entre iteraciones, así un `get()` nunca se cancela con un
mensaje ya extraído.

Con la señal de apagado el bucle termina SIN flush final: el lote
parcial se descarta.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from enum import Enum
from typing import Optional

from ..core.domain import ILogSink, InboundMessage, LokiValue
from ..core.shutdown import ShutdownCoordinator
from ..metrics import BATCH_FLUSHES, QUEUE_DEPTH, VALUES_DROPPED
from .retry import RetryConfig, RetryExecutor

logger = logging.getLogger(__name__)


class FlushTrigger(str, Enum):
    """Motivo del flush."""
    SIZE = "size"
    TIMEOUT = "timeout"


class PeriodicTimer:
    """Timer estrictamente periódico.

    Los deadlines son `inicio + k * intervalo` y no dependen de cuánto
    tarde cada flush; si se pierden deadlines, los ticks atrasados
    disparan de inmediato.
    """

    def __init__(self, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._next: Optional[float] = None

    def start(self) -> None:
        self._next = asyncio.get_running_loop().time() + self._interval

    async def tick(self) -> None:
        if self._next is None:
            self.start()
        delay = self._next - asyncio.get_running_loop().time()
        if delay > 0:
            await asyncio.sleep(delay)
        self._next += self._interval


class BatchDispatcher:
    """Scheduler de lotes; dueño exclusivo del lote y del contador."""

    def __init__(
        self,
        queue: asyncio.Queue[InboundMessage],
        sink: ILogSink,
        shutdown: ShutdownCoordinator,
        batch_size: int,
        batch_timeout: float,
        retry: Optional[RetryExecutor] = None,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size cannot be 0")
        if batch_timeout <= 0:
            raise ValueError("batch_timeout cannot be 0")

        self._queue = queue
        self._sink = sink
        self._shutdown = shutdown
        self._batch_size = batch_size
        self._batch_timeout = batch_timeout
        self._retry = retry or RetryExecutor(RetryConfig())

        self._batch: dict[str, list[LokiValue]] = {}
        self._count = 0
        self._running = False

        # Métricas
        self._flushes = {FlushTrigger.SIZE: 0, FlushTrigger.TIMEOUT: 0}
        self._values_pushed = 0
        self._values_dropped = 0
        self._values_discarded = 0

    async def run(self) -> None:
        """Bucle principal; termina con la señal de apagado."""
        timer = PeriodicTimer(self._batch_timeout)
        timer.start()

        get_task: Optional[asyncio.Future] = None
        tick_task: Optional[asyncio.Future] = None
        stop_task = asyncio.ensure_future(self._shutdown.wait())
        self._running = True
        logger.info(
            "[BATCH] Dispatcher started batch_size=%d batch_timeout=%.1fs",
            self._batch_size, self._batch_timeout,
        )

        try:
            while True:
                if get_task is None:
                    get_task = asyncio.ensure_future(self._queue.get())
                if tick_task is None:
                    tick_task = asyncio.ensure_future(timer.tick())

                done, _ = await asyncio.wait(
                    {get_task, tick_task, stop_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if stop_task in done:
                    break

                if get_task in done:
                    message = get_task.result()
                    get_task = None
                    QUEUE_DEPTH.set(self._queue.qsize())
                    if self.accumulate(message):
                        logger.debug("[BATCH] Batch size reached")
                        await self.flush(FlushTrigger.SIZE)
                    continue

                if tick_task in done:
                    tick_task = None
                    logger.debug("[BATCH] Batch timeout")
                    if self._count > 0:
                        await self.flush(FlushTrigger.TIMEOUT)
        finally:
            self._running = False
            # Un mensaje ya extraído pero no atendido también se pierde
            if get_task is not None and get_task.done() and not get_task.cancelled():
                self.accumulate(get_task.result())
            for task in (get_task, tick_task, stop_task):
                if task is not None and not task.done():
                    task.cancel()
            self._discard_pending()
            logger.info("[BATCH] Dispatcher stopped. %s", self.stats)

    def accumulate(self, message: InboundMessage) -> bool:
        """Agrega el mensaje al lote de su label.

        Returns:
            True si el contador alcanzó el umbral de tamaño
        """
        self._batch.setdefault(message.label, []).append(message.to_loki_value())
        self._count += 1
        return self._count >= self._batch_size

    async def flush(self, trigger: FlushTrigger) -> None:
        """Envía cada label (con retry propio) y reinicia el lote.

        El lote y el contador se reinician siempre, aunque algún label
        haya agotado los reintentos: esos valores se pierden.
        """
        batch, count = self._batch, self._count
        self._batch, self._count = {}, 0

        self._flushes[trigger] += 1
        BATCH_FLUSHES.labels(trigger=trigger.value).inc()
        logger.debug("[BATCH] Push size=%d labels=%d trigger=%s", count, len(batch), trigger.value)

        for label, values in batch.items():
            ok = await self._retry.run(
                functools.partial(self._sink.push, label, values),
                name=f"loki_push:{label}",
            )
            if ok:
                self._values_pushed += len(values)
            else:
                self._values_dropped += len(values)
                VALUES_DROPPED.labels(reason='retries_exhausted').inc(len(values))
                logger.error(
                    "[BATCH] Loki push failed, dropping %d values for label=%s",
                    len(values), label,
                )

    def _discard_pending(self) -> None:
        if self._count == 0:
            return
        logger.info("[BATCH] Discarding %d unflushed values on shutdown", self._count)
        self._values_discarded += self._count
        VALUES_DROPPED.labels(reason='shutdown').inc(self._count)
        self._batch, self._count = {}, 0

    @property
    def pending(self) -> dict[str, list[LokiValue]]:
        """Copia del lote actual (para diagnóstico y tests)."""
        return {label: list(values) for label, values in self._batch.items()}

    @property
    def count(self) -> int:
        return self._count

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "pending": self._count,
            "flushes_size": self._flushes[FlushTrigger.SIZE],
            "flushes_timeout": self._flushes[FlushTrigger.TIMEOUT],
            "values_pushed": self._values_pushed,
            "values_dropped": self._values_dropped,
            "values_discarded": self._values_discarded,
            "retry": self._retry.stats,
        }
