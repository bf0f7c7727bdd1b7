"""Decodificación de payloads MQTT.

Los payloads son bytes arbitrarios que se interpretan como texto UTF-8.
Un payload no decodificable descarta solo ese mensaje.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class DecodeResult:
    """Resultado de decodificación."""

    valid: bool
    text: Optional[str] = None
    error: Optional[str] = None


def decode_payload(payload: bytes, topic: str = "") -> DecodeResult:
    """Decodifica el payload como UTF-8 estricto.

    Args:
        payload: Bytes recibidos por MQTT
        topic: Topic de origen (solo para logging)

    Returns:
        DecodeResult con el texto o el error
    """
    try:
        return DecodeResult(valid=True, text=bytes(payload).decode("utf-8"))
    except UnicodeDecodeError as e:
        logger.error("[MQTT] Payload is not valid UTF-8 (topic=%s): %s", topic, e)
        return DecodeResult(valid=False, error=str(e))
