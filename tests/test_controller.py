"""Unit tests for controller.py - Worker pool and requeue handling."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import REGISTRY

from controller import Controller, ControllerConfig
from errors import TransportError
from reconciler import ReconcileRequest, ReconcileResult

REQUEST = ReconcileRequest(namespace="runners", name="widgets-autoscaler")


@pytest.fixture
def mock_reconciler():
    reconciler = MagicMock()
    reconciler.reconcile = AsyncMock(return_value=ReconcileResult(message="ok"))
    return reconciler


@pytest.mark.asyncio
class TestControllerProcess:
    """Tests for Controller.process."""

    async def test_success_forgets_backoff(self, mock_reconciler):
        controller = Controller(mock_reconciler)
        controller.queue.rate_limiter.when(REQUEST)

        await controller.process(REQUEST)

        mock_reconciler.reconcile.assert_awaited_once_with(REQUEST)
        assert controller.queue.num_requeues(REQUEST) == 0
        assert controller.queue._waiting == {}

    async def test_success_schedules_resync(self, mock_reconciler):
        mock_reconciler.reconcile.return_value = ReconcileResult(
            message="Webhook in sync", requeue_after=14400
        )
        controller = Controller(mock_reconciler)

        await controller.process(REQUEST)

        assert REQUEST in controller.queue._waiting
        assert len(controller.queue) == 0
        controller.queue.shutdown()

    async def test_failure_requeues_with_backoff(self, mock_reconciler):
        mock_reconciler.reconcile.side_effect = TransportError("boom", 500)
        controller = Controller(
            mock_reconciler,
            ControllerConfig(backoff_base_delay=1, backoff_max_delay=120),
        )

        await controller.process(REQUEST)
        await controller.process(REQUEST)

        assert controller.queue.num_requeues(REQUEST) == 2
        assert REQUEST in controller.queue._waiting
        controller.queue.shutdown()

    async def test_unexpected_exception_is_requeued(self, mock_reconciler):
        mock_reconciler.reconcile.side_effect = RuntimeError("unexpected")
        controller = Controller(mock_reconciler)

        await controller.process(REQUEST)

        assert controller.queue.num_requeues(REQUEST) == 1
        controller.queue.shutdown()

    async def test_cancellation_propagates(self, mock_reconciler):
        mock_reconciler.reconcile.side_effect = asyncio.CancelledError()
        controller = Controller(mock_reconciler)

        with pytest.raises(asyncio.CancelledError):
            await controller.process(REQUEST)


@pytest.mark.asyncio
class TestControllerWorkers:
    """Tests for the worker pool."""

    async def test_workers_drain_queue(self, mock_reconciler):
        controller = Controller(
            mock_reconciler, ControllerConfig(max_concurrent_reconciles=2)
        )
        other = ReconcileRequest(namespace="runners", name="other")
        controller.enqueue(REQUEST)
        controller.enqueue(other)
        controller.enqueue(REQUEST)

        task = asyncio.create_task(controller.start())
        for _ in range(20):
            if mock_reconciler.reconcile.await_count >= 2:
                break
            await asyncio.sleep(0.01)

        assert controller.running is True
        assert len(controller._workers) == 2
        await controller.stop()
        await asyncio.wait_for(task, timeout=1)

        awaited = [c.args[0] for c in mock_reconciler.reconcile.await_args_list]
        assert sorted(awaited, key=str) == [other, REQUEST]
        assert controller.running is False

    async def test_same_key_never_processed_concurrently(self, mock_reconciler):
        active = 0
        peak = 0

        async def slow_reconcile(request):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return ReconcileResult(message="ok")

        mock_reconciler.reconcile.side_effect = slow_reconcile
        controller = Controller(
            mock_reconciler, ControllerConfig(max_concurrent_reconciles=4)
        )

        task = asyncio.create_task(controller.start())
        for _ in range(5):
            controller.enqueue(REQUEST)
            await asyncio.sleep(0.005)
        await asyncio.sleep(0.05)

        await controller.stop()
        await asyncio.wait_for(task, timeout=1)

        assert peak == 1


def sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


@pytest.mark.asyncio
class TestControllerMetrics:
    """Tests for reconcile metrics."""

    async def test_success_counted(self, mock_reconciler):
        controller = Controller(mock_reconciler)
        before = sample("runner_webhook_reconcile_total", {"result": "success"})
        observed = sample("runner_webhook_reconcile_duration_seconds_count")

        await controller.process(REQUEST)

        after = sample("runner_webhook_reconcile_total", {"result": "success"})
        assert after == before + 1
        assert sample("runner_webhook_reconcile_duration_seconds_count") == (
            observed + 1
        )
        assert sample("runner_webhook_reconcile_in_progress") == 0

    async def test_resync_counted(self, mock_reconciler):
        mock_reconciler.reconcile.return_value = ReconcileResult(
            message="Webhook in sync", requeue_after=14400
        )
        controller = Controller(mock_reconciler)
        labels = {"result": "requeue_after"}
        before = sample("runner_webhook_reconcile_total", labels)

        await controller.process(REQUEST)

        assert sample("runner_webhook_reconcile_total", labels) == before + 1
        controller.queue.shutdown()

    async def test_error_counted(self, mock_reconciler):
        mock_reconciler.reconcile.side_effect = TransportError("boom", 500)
        controller = Controller(mock_reconciler)
        before = sample("runner_webhook_reconcile_total", {"result": "error"})
        observed = sample("runner_webhook_reconcile_duration_seconds_count")

        await controller.process(REQUEST)

        after = sample("runner_webhook_reconcile_total", {"result": "error"})
        assert after == before + 1
        assert sample("runner_webhook_reconcile_duration_seconds_count") == (
            observed + 1
        )
        controller.queue.shutdown()

    async def test_queue_depth(self, mock_reconciler):
        controller = Controller(mock_reconciler)

        controller.enqueue(REQUEST)
        controller.enqueue(ReconcileRequest(namespace="runners", name="other"))

        assert sample("runner_webhook_workqueue_depth") == 2


def make_elector(acquire_results, renew_result=True):
    elector = MagicMock()
    elector.lease_name = "58a9eb7f.bosun.jspaas.uk"
    elector.retry_period = 0.01
    elector.try_acquire_or_renew = AsyncMock(side_effect=acquire_results)
    elector.renew = AsyncMock(return_value=renew_result)
    elector.release = AsyncMock()
    return elector


@pytest.mark.asyncio
class TestControllerLeaderElection:
    """Tests for lease-gated start."""

    async def test_waits_for_lease_before_reconciling(self, mock_reconciler):
        elector = make_elector([False, False, True])
        controller = Controller(mock_reconciler, elector=elector)
        controller.enqueue(REQUEST)

        task = asyncio.create_task(controller.start())
        for _ in range(50):
            if mock_reconciler.reconcile.await_count:
                break
            await asyncio.sleep(0.01)

        assert elector.try_acquire_or_renew.await_count == 3
        mock_reconciler.reconcile.assert_awaited_once_with(REQUEST)

        await controller.stop()
        await asyncio.wait_for(task, timeout=1)
        elector.release.assert_awaited_once()

    async def test_stop_while_waiting_for_lease(self, mock_reconciler):
        elector = make_elector(None)
        elector.try_acquire_or_renew.return_value = False
        controller = Controller(mock_reconciler, elector=elector)
        controller.enqueue(REQUEST)

        task = asyncio.create_task(controller.start())
        await asyncio.sleep(0.03)
        await controller.stop()
        await asyncio.wait_for(task, timeout=1)

        mock_reconciler.reconcile.assert_not_awaited()
        assert controller._workers == []

    async def test_lost_lease_stops_controller(self, mock_reconciler):
        elector = make_elector([True], renew_result=False)
        controller = Controller(mock_reconciler, elector=elector)

        task = asyncio.create_task(controller.start())
        await asyncio.wait_for(task, timeout=1)

        elector.renew.assert_awaited()
        assert controller.running is False
        assert controller.queue.shutting_down is True

    async def test_no_elector_starts_immediately(self, mock_reconciler):
        controller = Controller(mock_reconciler)
        controller.enqueue(REQUEST)

        task = asyncio.create_task(controller.start())
        for _ in range(20):
            if mock_reconciler.reconcile.await_count:
                break
            await asyncio.sleep(0.01)

        mock_reconciler.reconcile.assert_awaited_once_with(REQUEST)
        await controller.stop()
        await asyncio.wait_for(task, timeout=1)
