"""Batching y envío a Loki."""

from .batcher import BatchDispatcher, FlushTrigger, PeriodicTimer
from .retry import RetryConfig, RetryExecutor

__all__ = [
    "BatchDispatcher",
    "FlushTrigger",
    "PeriodicTimer",
    "RetryConfig",
    "RetryExecutor",
]
