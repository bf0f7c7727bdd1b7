"""CLI entry point for the MQTT → Loki bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Optional, Sequence

from common.config import ConfigError, load_settings

from .main import run_bridge

logger = logging.getLogger(__name__)

EXIT_INVALID_CONFIG = 2


def _package_version() -> str:
    try:
        return version("esphome2loki")
    except PackageNotFoundError:
        return "unknown"


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level_name: str) -> None:
    level = _resolve_level(level_name)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    # httpx loguea cada request en INFO
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="esphome2loki", description="ESPHome MQTT logs to Loki.")
    p.add_argument(
        "-c", "--config",
        default=os.getenv("ESPHOME2LOKI_CONFIG", "config.toml"),
        help="Path to configuration file. See config.sample.toml for format.",
    )
    p.add_argument("--log-level", default=None, help="override [system] log_level")
    p.add_argument("--check", action="store_true", help="validate the configuration and exit")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Invalid config: {e}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    setup_logging(args.log_level or settings.system.log_level)
    logger.info("esphome2loki v%s", _package_version())
    logger.debug("Config: %s", settings.model_dump(exclude={"loki": {"password"}, "mqtt": {"password"}}))

    if args.check:
        logger.info(
            "Config OK: %d devices, batch_size=%d, batch_timeout=%ds",
            len(settings.device),
            settings.loki.batch_size,
            settings.loki.batch_timeout_seconds,
        )
        return 0

    return asyncio.run(run_bridge(settings))


if __name__ == "__main__":
    sys.exit(main())
