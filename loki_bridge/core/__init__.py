"""Núcleo del bridge: modelos de dominio y coordinación de apagado."""

from .shutdown import ShutdownCoordinator, install_signal_handlers

__all__ = [
    "ShutdownCoordinator",
    "install_signal_handlers",
]
