"""Tests del batcher (cola → lotes → sink).

Tests obligatorios:
1. Orden de llegada por label
2. Disparo por tamaño
3. Disparo por timeout (y timeout con lote vacío)
4. Aislamiento por label ante fallos del sink
5. Limpieza incondicional del lote
6. Descarte del lote parcial al apagar
7. Escenario completo: umbral=3, timeout

Ejecutar:
    pytest tests/test_batcher.py -v
"""

import asyncio

import pytest

from fakes import FakeSink, make_message, recording_sleep, wait_until
from loki_bridge.core.shutdown import ShutdownCoordinator
from loki_bridge.dispatch import (
    BatchDispatcher,
    FlushTrigger,
    PeriodicTimer,
    RetryConfig,
    RetryExecutor,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def delays() -> list:
    return []


@pytest.fixture
def retry(delays) -> RetryExecutor:
    """Retry 3×2s con sleep falso."""
    return RetryExecutor(RetryConfig(max_attempts=3, base_delay=2.0), sleep=recording_sleep(delays))


def make_dispatcher(sink, retry, batch_size=3, batch_timeout=60.0, queue=None, shutdown=None):
    return BatchDispatcher(
        queue=queue if queue is not None else asyncio.Queue(),
        sink=sink,
        shutdown=shutdown or ShutdownCoordinator(),
        batch_size=batch_size,
        batch_timeout=batch_timeout,
        retry=retry,
    )


async def stop(dispatcher_task: asyncio.Task, shutdown: ShutdownCoordinator) -> None:
    shutdown.trigger("test")
    await asyncio.wait_for(dispatcher_task, timeout=2.0)


# =============================================================================
# TEST 1: ORDEN
# =============================================================================

class TestOrdering:
    """Dentro de un label se conserva el orden de llegada."""

    @pytest.mark.asyncio
    async def test_values_keep_arrival_order(self, retry):
        sink = FakeSink()
        queue: asyncio.Queue = asyncio.Queue()
        shutdown = ShutdownCoordinator()
        dispatcher = make_dispatcher(sink, retry, batch_size=20, queue=queue, shutdown=shutdown)

        for i in range(20):
            queue.put_nowait(make_message("kitchen", f"line {i}", timestamp=1000 + i))

        task = asyncio.create_task(dispatcher.run())
        await wait_until(lambda: len(sink.calls) == 1)
        await stop(task, shutdown)

        label, values = sink.calls[0]
        assert label == "kitchen"
        assert values == [[str(1000 + i), f"line {i}"] for i in range(20)]

    @pytest.mark.asyncio
    async def test_interleaved_labels_keep_per_label_order(self, retry):
        sink = FakeSink()
        dispatcher = make_dispatcher(sink, retry, batch_size=100)

        for i in range(6):
            label = "a" if i % 2 == 0 else "b"
            dispatcher.accumulate(make_message(label, f"{label}{i}", timestamp=i))

        await dispatcher.flush(FlushTrigger.TIMEOUT)

        assert sink.delivered["a"] == [["0", "a0"], ["2", "a2"], ["4", "a4"]]
        assert sink.delivered["b"] == [["1", "b1"], ["3", "b3"], ["5", "b5"]]


# =============================================================================
# TEST 2: DISPARO POR TAMAÑO
# =============================================================================

class TestSizeTrigger:
    """Con T mensajes acumulados se hace flush antes del mensaje T+1."""

    def test_accumulate_reports_threshold(self, retry):
        dispatcher = make_dispatcher(FakeSink(), retry, batch_size=3)

        assert dispatcher.accumulate(make_message("a", "1")) is False
        assert dispatcher.accumulate(make_message("b", "2")) is False
        assert dispatcher.accumulate(make_message("a", "3")) is True
        assert dispatcher.count == 3

    @pytest.mark.asyncio
    async def test_flush_before_next_window(self, retry):
        sink = FakeSink()
        queue: asyncio.Queue = asyncio.Queue()
        shutdown = ShutdownCoordinator()
        dispatcher = make_dispatcher(sink, retry, batch_size=3, queue=queue, shutdown=shutdown)

        queue.put_nowait(make_message("a", "m1", timestamp=1))
        queue.put_nowait(make_message("b", "m2", timestamp=2))
        queue.put_nowait(make_message("a", "m3", timestamp=3))
        queue.put_nowait(make_message("b", "m4", timestamp=4))

        task = asyncio.create_task(dispatcher.run())
        await wait_until(lambda: dispatcher.count == 1 and len(sink.calls) == 2)

        pushed = sorted(v for _, values in sink.calls for v in values)
        assert pushed == [["1", "m1"], ["2", "m2"], ["3", "m3"]]
        assert dispatcher.pending == {"b": [["4", "m4"]]}
        assert dispatcher.stats["flushes_size"] == 1

        await stop(task, shutdown)


# =============================================================================
# TEST 3: DISPARO POR TIMEOUT
# =============================================================================

class TestTimeoutTrigger:
    """El timer periódico vacía lotes parciales."""

    @pytest.mark.asyncio
    async def test_partial_batch_flushed_on_timeout(self, retry):
        sink = FakeSink()
        queue: asyncio.Queue = asyncio.Queue()
        shutdown = ShutdownCoordinator()
        dispatcher = make_dispatcher(
            sink, retry, batch_size=100, batch_timeout=0.05, queue=queue, shutdown=shutdown,
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        task = asyncio.create_task(dispatcher.run())
        queue.put_nowait(make_message("kitchen", "one", timestamp=1))
        queue.put_nowait(make_message("kitchen", "two", timestamp=2))

        await wait_until(lambda: len(sink.calls) == 1)
        elapsed = loop.time() - started

        assert sink.calls[0] == ("kitchen", [["1", "one"], ["2", "two"]])
        assert elapsed < 0.5
        assert dispatcher.stats["flushes_timeout"] == 1
        assert dispatcher.count == 0

        await stop(task, shutdown)

    @pytest.mark.asyncio
    async def test_empty_batch_triggers_no_push(self, retry):
        sink = FakeSink()
        shutdown = ShutdownCoordinator()
        dispatcher = make_dispatcher(sink, retry, batch_timeout=0.02, shutdown=shutdown)

        task = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0.15)
        await stop(task, shutdown)

        assert sink.calls == []
        assert dispatcher.stats["flushes_timeout"] == 0

    @pytest.mark.asyncio
    async def test_timer_deadlines_are_periodic(self):
        """Los ticks atrasados disparan de inmediato (no se re-arman)."""
        loop = asyncio.get_running_loop()
        timer = PeriodicTimer(0.05)
        started = loop.time()
        timer.start()

        await asyncio.sleep(0.12)  # simula un flush lento
        await timer.tick()
        await timer.tick()
        assert loop.time() - started < 0.145

        await timer.tick()
        assert loop.time() - started >= 0.14

    def test_timer_rejects_zero_interval(self):
        with pytest.raises(ValueError):
            PeriodicTimer(0)


# =============================================================================
# TEST 4: AISLAMIENTO POR LABEL
# =============================================================================

class TestPerLabelIsolation:
    """El fallo de un label no impide la entrega de los demás."""

    @pytest.mark.asyncio
    async def test_failing_label_does_not_block_other(self, retry, delays):
        sink = FakeSink(fail_labels={"a"})
        dispatcher = make_dispatcher(sink, retry, batch_size=100)

        dispatcher.accumulate(make_message("a", "lost", timestamp=1))
        dispatcher.accumulate(make_message("b", "kept", timestamp=2))
        await dispatcher.flush(FlushTrigger.SIZE)

        attempts = [label for label, _ in sink.calls]
        assert attempts.count("a") == 3
        assert attempts.count("b") == 1
        assert sink.delivered == {"b": [["2", "kept"]]}
        # backoff solo entre intentos del label que falla
        assert delays == [2.0, 2.0]

        stats = dispatcher.stats
        assert stats["values_pushed"] == 1
        assert stats["values_dropped"] == 1

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, retry, delays):
        sink = FakeSink(fail_times=2)
        dispatcher = make_dispatcher(sink, retry, batch_size=100)

        dispatcher.accumulate(make_message("a", "eventually", timestamp=7))
        await dispatcher.flush(FlushTrigger.TIMEOUT)

        assert len(sink.calls) == 3
        assert sink.delivered == {"a": [["7", "eventually"]]}
        assert delays == [2.0, 2.0]


# =============================================================================
# TEST 5: LIMPIEZA INCONDICIONAL
# =============================================================================

class TestUnconditionalClear:
    """Tras un flush el lote y el contador vuelven a cero."""

    @pytest.mark.asyncio
    async def test_batch_cleared_after_failed_flush(self, retry):
        sink = FakeSink(fail_labels={"a", "b"})
        dispatcher = make_dispatcher(sink, retry, batch_size=100)

        dispatcher.accumulate(make_message("a", "x"))
        dispatcher.accumulate(make_message("b", "y"))
        await dispatcher.flush(FlushTrigger.SIZE)

        assert dispatcher.count == 0
        assert dispatcher.pending == {}

    @pytest.mark.asyncio
    async def test_next_window_starts_from_zero(self, retry):
        sink = FakeSink(fail_labels={"a"})
        dispatcher = make_dispatcher(sink, retry, batch_size=2)

        dispatcher.accumulate(make_message("a", "1"))
        dispatcher.accumulate(make_message("a", "2"))
        await dispatcher.flush(FlushTrigger.SIZE)

        assert dispatcher.accumulate(make_message("a", "3")) is False
        assert dispatcher.count == 1
        assert [text for _, text in dispatcher.pending["a"]] == ["3"]


# =============================================================================
# TEST 6: DESCARTE AL APAGAR
# =============================================================================

class TestDropOnCancel:
    """El lote parcial no se envía al recibir la señal de apagado."""

    @pytest.mark.asyncio
    async def test_partial_batch_discarded(self, retry):
        sink = FakeSink()
        queue: asyncio.Queue = asyncio.Queue()
        shutdown = ShutdownCoordinator()
        dispatcher = make_dispatcher(
            sink, retry, batch_size=100, batch_timeout=60.0, queue=queue, shutdown=shutdown,
        )

        task = asyncio.create_task(dispatcher.run())
        queue.put_nowait(make_message("kitchen", "a"))
        queue.put_nowait(make_message("kitchen", "b"))
        await wait_until(lambda: dispatcher.count == 2)

        await stop(task, shutdown)

        assert sink.calls == []
        assert dispatcher.stats["values_discarded"] == 2
        assert dispatcher.is_running is False

    def test_zero_thresholds_rejected(self, retry):
        with pytest.raises(ValueError):
            make_dispatcher(FakeSink(), retry, batch_size=0)
        with pytest.raises(ValueError):
            make_dispatcher(FakeSink(), retry, batch_timeout=0)


# =============================================================================
# TEST 7: ESCENARIO COMPLETO
# =============================================================================

class TestKitchenScenario:
    """umbral=3: 3 mensajes → flush por tamaño; 1 más → flush por timer."""

    @pytest.mark.asyncio
    async def test_size_then_timeout(self, retry):
        sink = FakeSink()
        queue: asyncio.Queue = asyncio.Queue()
        shutdown = ShutdownCoordinator()
        dispatcher = make_dispatcher(
            sink, retry, batch_size=3, batch_timeout=0.3, queue=queue, shutdown=shutdown,
        )

        for ts in (0, 1, 2):
            queue.put_nowait(make_message("kitchen", f"line {ts}", timestamp=ts))

        task = asyncio.create_task(dispatcher.run())
        await wait_until(lambda: len(sink.calls) == 1)

        assert sink.calls[0] == (
            "kitchen",
            [["0", "line 0"], ["1", "line 1"], ["2", "line 2"]],
        )

        queue.put_nowait(make_message("kitchen", "line 10", timestamp=10))
        await wait_until(lambda: len(sink.calls) == 2)

        assert sink.calls[1] == ("kitchen", [["10", "line 10"]])
        assert dispatcher.stats["flushes_size"] == 1
        assert dispatcher.stats["flushes_timeout"] == 1

        await stop(task, shutdown)
