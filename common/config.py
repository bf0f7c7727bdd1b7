from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

ENV_PREFIX = "ESPHOME2LOKI_"


class ConfigError(Exception):
    """Configuración inválida o ilegible."""


class SystemSettings(BaseModel):
    log_level: str = "info"
    # 0 = sin endpoint de métricas
    metrics_port: int = Field(default=0, ge=0, le=65535)


class DeviceSettings(BaseModel):
    label: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)

    @field_validator("topic")
    @classmethod
    def validate_topic_filter(cls, v: str) -> str:
        levels = v.split("/")
        for i, level in enumerate(levels):
            if "#" in level and (level != "#" or i != len(levels) - 1):
                raise ValueError(f"invalid topic filter {v!r}: '#' must be the last level")
            if "+" in level and level != "+":
                raise ValueError(f"invalid topic filter {v!r}: '+' must occupy a whole level")
        return v


class LokiSettings(BaseModel):
    base_url: str
    username: str = ""
    password: str = ""
    batch_size: int
    batch_timeout_seconds: int

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("batch_size cannot be 0.")
        return v

    @field_validator("batch_timeout_seconds")
    @classmethod
    def validate_batch_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("batch_timeout_seconds cannot be 0.")
        return v


class MQTTSettings(BaseModel):
    address: str
    port: int = Field(default=1883, ge=1, le=65535)
    use_tls: bool = False
    username: str = ""
    password: str = ""
    client_id: str = "esphome2loki"


class BridgeSettings(BaseModel):
    """Configuración completa del bridge MQTT → Loki.

    Formato TOML esperado (ver config.sample.toml):

        [system]
        log_level = "info"

        [[device]]
        label = "kitchen"
        topic = "kitchen/debug"

        [loki]
        base_url = "http://127.0.0.1:3100"
        batch_size = 100
        batch_timeout_seconds = 5

        [mqtt]
        address = "127.0.0.1"
        port = 1883
    """

    system: SystemSettings = Field(default_factory=SystemSettings)
    device: List[DeviceSettings] = Field(default_factory=list)
    loki: LokiSettings
    mqtt: MQTTSettings

    @model_validator(mode="after")
    def validate_devices(self) -> "BridgeSettings":
        if not self.device:
            raise ValueError("at least one [[device]] must be configured")
        seen: set[str] = set()
        for dev in self.device:
            if dev.topic in seen:
                raise ValueError(f"topic {dev.topic!r} is configured more than once")
            seen.add(dev.topic)
        return self


def _env_fallbacks(data: dict[str, Any]) -> dict[str, Any]:
    """Completa con variables ESPHOME2LOKI_<SECCION>_<CLAVE> lo que falte.

    El archivo tiene prioridad: el entorno solo aporta valores ausentes.
    """
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in data.items()}
    for section, model in (
        ("system", SystemSettings),
        ("loki", LokiSettings),
        ("mqtt", MQTTSettings),
    ):
        values = merged.setdefault(section, {})
        if not isinstance(values, dict):
            continue
        for key in model.model_fields:
            env_value = os.getenv(f"{ENV_PREFIX}{section.upper()}_{key.upper()}")
            if env_value is not None and key not in values:
                values[key] = env_value
    return merged


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"])
        msg = err["msg"].removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def load_settings_from_dict(data: dict[str, Any]) -> BridgeSettings:
    try:
        return BridgeSettings.model_validate(_env_fallbacks(data))
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e


def load_settings(path: str | Path, env_file: Optional[str] = None) -> BridgeSettings:
    # Carga .env (si existe) sin pisar variables reales del entorno.
    env_file = env_file or os.getenv("ESPHOME2LOKI_ENV_FILE", ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    path = Path(path)
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}") from e

    return load_settings_from_dict(data)
