"""Esquemas del endpoint de push de Loki (/loki/api/v1/push).

Formato:
{
    "streams": [
        {
            "stream": {"label": "kitchen"},
            "values": [["1706688000000000000", "línea de log"], ...]
        }
    ]
}
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from pydantic import BaseModel, Field


class LokiStream(BaseModel):
    label: str


class LokiStreams(BaseModel):
    stream: LokiStream
    # [timestamp en ns como string decimal, texto]
    values: List[Tuple[str, str]] = Field(default_factory=list)


class LokiPush(BaseModel):
    streams: List[LokiStreams] = Field(default_factory=list)

    @classmethod
    def single(cls, label: str, values: Sequence[Sequence[str]]) -> "LokiPush":
        """Un push con un único stream, como envía el bridge."""
        return cls(
            streams=[
                LokiStreams(
                    stream=LokiStream(label=label),
                    values=[(str(ts), text) for ts, text in values],
                )
            ]
        )
