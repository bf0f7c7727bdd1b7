"""Retry con número de intentos acotado.

Política explícita (intentos + delay), desacoplada del transporte y del
timer, para poder probarla con un sink falso que falla N veces.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 2.0


@dataclass
class RetryConfig:
    """Configuración de retry.

    Por defecto: 3 intentos con 2s fijos entre intentos
    (exponential_base=1.0, sin jitter).
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_DELAY_SECONDS  # segundos
    max_delay: float = 60.0  # segundos
    exponential_base: float = 1.0
    jitter: bool = False

    def calculate_delay(self, attempt: int) -> float:
        """Calcula el delay tras un intento fallido.

        Args:
            attempt: Número de intento (1-indexed)

        Returns:
            Delay en segundos
        """
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0, delay)


class RetryExecutor:
    """Ejecutor async de operaciones que devuelven True/False."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._total_attempts = 0
        self._total_retries = 0
        self._total_failures = 0

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def stats(self) -> dict:
        """Estadísticas del ejecutor."""
        return {
            "total_attempts": self._total_attempts,
            "total_retries": self._total_retries,
            "total_failures": self._total_failures,
        }

    async def run(
        self,
        operation: Callable[[], Awaitable[bool]],
        name: str = "operation",
    ) -> bool:
        """Ejecuta la operación hasta que devuelva True o se agoten intentos.

        Una excepción de la operación cuenta como un intento fallido.

        Returns:
            True si algún intento tuvo éxito, False si se agotaron
        """
        for attempt in range(1, self._config.max_attempts + 1):
            self._total_attempts += 1
            logger.debug("RETRY name=%s attempt=%d/%d", name, attempt, self._config.max_attempts)

            try:
                if await operation():
                    return True
            except Exception as e:
                logger.error("RETRY name=%s attempt=%d raised: %s", name, attempt, e)

            if attempt == self._config.max_attempts:
                break

            self._total_retries += 1
            delay = self._config.calculate_delay(attempt)
            logger.warning(
                "RETRY name=%s attempt=%d/%d delay=%.2fs",
                name, attempt, self._config.max_attempts, delay,
            )
            await self._sleep(delay)

        self._total_failures += 1
        logger.error("RETRY_EXHAUSTED name=%s attempts=%d", name, self._config.max_attempts)
        return False
