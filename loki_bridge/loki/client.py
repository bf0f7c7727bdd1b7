"""Cliente HTTP de Loki.

Sin estado entre llamadas: cada `push` envía un label con su secuencia
completa de valores en una sola petición. Cualquier fallo (no-2xx o
error de red) se reporta como False, sin distinguir la causa; el
reintento es responsabilidad del llamador.
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

import httpx
import orjson

from common.config import LokiSettings

from ..core.domain import ILogSink, LokiValue
from ..metrics import LOKI_PUSHES
from .schemas import LokiPush

logger = logging.getLogger(__name__)

PUSH_PATH = "/loki/api/v1/push"
READY_PATH = "/ready"
DEFAULT_TIMEOUT = 10.0


class LokiClient(ILogSink):
    """Wrapper de httpx.AsyncClient para el API de Loki.

    Uso:
        async with LokiClient("http://127.0.0.1:3100") as loki:
            ok = await loki.push("kitchen", [[ts, "line"]])
    """

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.AsyncClient(
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: LokiSettings, **kwargs) -> "LokiClient":
        return cls(
            base_url=settings.base_url,
            username=settings.username or None,
            password=settings.password or None,
            **kwargs,
        )

    def get_url(self, method: str) -> str:
        return f"{self.base_url}{method}"

    @staticmethod
    def timestamp_ns() -> int:
        return time.time_ns()

    async def is_ready(self) -> bool:
        """GET /ready; False si Loki no responde o no está listo."""
        try:
            res = await self._client.get(self.get_url(READY_PATH))
        except httpx.HTTPError as e:
            logger.warning("[LOKI] Ready check failed: %s", e)
            return False
        logger.debug("[LOKI] Ready response %d", res.status_code)
        return res.is_success

    async def push(self, label: str, values: Sequence[LokiValue]) -> bool:
        body = orjson.dumps(LokiPush.single(label, values).model_dump(mode="json"))
        try:
            res = await self._client.post(
                self.get_url(PUSH_PATH),
                content=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("[LOKI] Push failed label=%s: %s", label, e)
            LOKI_PUSHES.labels(status='failed').inc()
            return False

        logger.debug("[LOKI] Push response %d label=%s values=%d", res.status_code, label, len(values))
        if not res.is_success:
            logger.error(
                "[LOKI] Push rejected label=%s status=%d body=%s",
                label, res.status_code, res.text[:200],
            )
            LOKI_PUSHES.labels(status='failed').inc()
            return False

        LOKI_PUSHES.labels(status='success').inc()
        return True

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "LokiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
