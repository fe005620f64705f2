"""
Operator Controller - Main reconciliation loop.

Similar to Kubernetes controllers, a bounded pool of workers drains the work
queue and hands each key to the reconciler. Failures are requeued with
exponential backoff; successes are requeued after the resync period the
reconciler asks for.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from leader import LeaderElector
from metrics import (
    RECONCILE_DURATION,
    RECONCILE_IN_PROGRESS,
    RECONCILE_TOTAL,
    WORKQUEUE_DEPTH,
)
from reconciler import ReconcileRequest, RunnerWebhookReconciler
from workqueue import ExponentialBackoff, WorkQueue

logger = logging.getLogger(__name__)


@dataclass
class ControllerConfig:
    """Configuration for the controller."""

    max_concurrent_reconciles: int = 1

    # Exponential backoff configuration
    backoff_base_delay: float = 1  # base delay in seconds
    backoff_max_delay: float = 120  # max delay in seconds
    backoff_jitter_factor: float = 0.0


class Controller:
    """
    Main controller that implements the reconciliation loop.

    Keys are delivered by a watcher through :meth:`enqueue`. The work queue
    guarantees that one key is never reconciled by two workers at once.
    """

    def __init__(
        self,
        reconciler: RunnerWebhookReconciler,
        config: Optional[ControllerConfig] = None,
        queue: Optional[WorkQueue] = None,
        elector: Optional[LeaderElector] = None,
    ):
        self.reconciler = reconciler
        self.config = config or ControllerConfig()
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.queue: WorkQueue[ReconcileRequest] = queue or WorkQueue(
            ExponentialBackoff(
                base_delay=self.config.backoff_base_delay,
                max_delay=self.config.backoff_max_delay,
                jitter_factor=self.config.backoff_jitter_factor,
            )
        )
        self.elector = elector
        self.running = False
        self._workers: List[asyncio.Task] = []
        self._lease_task: Optional[asyncio.Task] = None

    def enqueue(self, request: ReconcileRequest) -> None:
        """Request a reconcile of the given autoscaler."""
        self.queue.add(request)
        WORKQUEUE_DEPTH.set(len(self.queue))

    async def start(self):
        """
        Start the worker pool and wait for it to finish.

        With leader election, workers only start once the lease is held, and
        the controller stops if the lease cannot be renewed.
        """
        self.running = True

        try:
            if self.elector and not await self._acquire_lease():
                return

            logger.info(
                f"Starting Operator Controller with "
                f"{self.max_concurrent_reconciles} workers"
            )
            if self.elector:
                self._lease_task = asyncio.create_task(self._hold_lease())

            self._workers = [
                asyncio.create_task(self._worker_loop(i))
                for i in range(self.max_concurrent_reconciles)
            ]
            await asyncio.gather(*self._workers)
        except asyncio.CancelledError:
            logger.info("Controller workers cancelled")
        finally:
            self.running = False
            if self._lease_task and not self._lease_task.done():
                self._lease_task.cancel()
            if self.elector:
                await self.elector.release()

    async def stop(self):
        """Stop the controller gracefully."""
        logger.info("Stopping Operator Controller")
        self.running = False
        self.queue.shutdown()

        for task in self._workers:
            if not task.done():
                task.cancel()

    async def _acquire_lease(self) -> bool:
        """Wait for the leader election lease. False if stopped first."""
        logger.info(f"Waiting for leader election lease {self.elector.lease_name}")
        while not self.queue.shutting_down:
            if await self.elector.try_acquire_or_renew():
                return True
            await asyncio.sleep(self.elector.retry_period)
        return False

    async def _hold_lease(self):
        """Renew the lease every retry period; stop the controller if lost."""
        while not self.queue.shutting_down:
            await asyncio.sleep(self.elector.retry_period)
            if not await self.elector.renew():
                logger.error("Lost leader election lease, stopping controller")
                await self.stop()
                return

    async def _worker_loop(self, worker_id: int):
        """Process keys until the queue shuts down."""
        logger.debug(f"Worker {worker_id} started")
        while True:
            request = await self.queue.get()
            if request is None:
                break
            WORKQUEUE_DEPTH.set(len(self.queue))
            try:
                await self.process(request)
            finally:
                self.queue.done(request)
        logger.debug(f"Worker {worker_id} stopped")

    async def process(self, request: ReconcileRequest) -> None:
        """
        Reconcile a single key and schedule its next pass.

        Errors are logged and the key is requeued with backoff. On success
        the backoff is reset and, if requested, a resync is scheduled.
        """
        start_time = time.monotonic()
        RECONCILE_IN_PROGRESS.inc()

        try:
            result = await self.reconciler.reconcile(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            RECONCILE_TOTAL.labels(result="error").inc()
            delay = self.queue.add_rate_limited(request)
            logger.error(
                f"Error reconciling {request}: {e} "
                f"(retry {self.queue.num_requeues(request)} in {delay:.1f}s)",
                exc_info=True,
            )
            return
        finally:
            RECONCILE_IN_PROGRESS.dec()
            RECONCILE_DURATION.observe(time.monotonic() - start_time)

        self.queue.forget(request)
        duration = time.monotonic() - start_time

        if result.requeue_after:
            RECONCILE_TOTAL.labels(result="requeue_after").inc()
            self.queue.add_after(request, result.requeue_after)
            logger.info(
                f"Reconciled {request} in {duration:.2f}s: {result.message}, "
                f"next sync in {result.requeue_after:.0f}s"
            )
        else:
            RECONCILE_TOTAL.labels(result="success").inc()
            logger.info(f"Reconciled {request} in {duration:.2f}s: {result.message}")
