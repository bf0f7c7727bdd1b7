"""Coordinador de apagado.

Una única señal de cancelación, disparada una sola vez, que observan
la tarea de ingesta y la de batching. El supervisor espera a que
ambas terminen; nunca las cancela a la fuerza.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Señal de cancelación broadcast e idempotente."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    def trigger(self, reason: str = "requested") -> bool:
        """Dispara la cancelación.

        Returns:
            True solo la primera vez; las siguientes se ignoran.
        """
        if self._event.is_set():
            logger.debug("[SHUTDOWN] Already shutting down, ignoring %s", reason)
            return False
        self._reason = reason
        self._event.set()
        logger.info("[SHUTDOWN] Shutting down (%s). Waiting for all jobs to finish...", reason)
        return True

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()


def install_signal_handlers(
    coordinator: ShutdownCoordinator,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> list[signal.Signals]:
    """Conecta SIGINT/SIGTERM al coordinador.

    Returns:
        Señales efectivamente instaladas (Windows no soporta add_signal_handler)
    """
    loop = loop or asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, coordinator.trigger, sig.name)
            installed.append(sig)
        except NotImplementedError:
            logger.warning("[SHUTDOWN] Signal handlers not supported for %s", sig.name)
    return installed
