"""
Claim Controller - dispatch loop around the claim reconciler.

Similar to Kubernetes controllers: a periodic resync finds claims that need
a bucket and bindings whose claim is gone, input plugins trigger passes as
claims change, and failed passes are retried with exponential backoff.
"""

import asyncio
import logging
import random
from typing import Dict, List, Optional, Set

from config import ControllerConfig
from errors import StoreError
from models import ObjectKey, RecordKind, should_provision
from reconciler import ClaimReconciler, ReconcileResult
from store import ResourceStore

logger = logging.getLogger(__name__)

# Cap on the backoff exponent
MAX_BACKOFF_EXPONENT = 10


class Controller:
    """
    Runs reconcile passes for claim identities.

    At most ``max_concurrent_reconciles`` passes run at once and a claim is
    never reconciled by two passes of the same controller at the same time;
    a trigger that arrives mid-pass re-runs the claim once the pass ends.
    """

    def __init__(
        self,
        reconciler: ClaimReconciler,
        store: ResourceStore,
        config: Optional[ControllerConfig] = None,
    ):
        self.reconciler = reconciler
        self.store = store
        self.config = config or ControllerConfig()
        self.reconcile_interval = self.config.reconcile_interval
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.semaphore = asyncio.Semaphore(self.max_concurrent_reconciles)
        self.running = False

        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued: Set[ObjectKey] = set()
        self._in_flight: Set[ObjectKey] = set()
        self._dirty: Set[ObjectKey] = set()

        # Backoff state per claim
        self._attempts: Dict[ObjectKey, int] = {}
        self._retry_timers: Dict[ObjectKey, asyncio.TimerHandle] = {}

        self._loop_tasks: List[asyncio.Task] = []
        self._pass_tasks: Set[asyncio.Task] = set()

    async def start(self):
        """Start the resync and dispatch loops."""
        logger.info("Starting Claim Controller")
        self.running = True

        self._loop_tasks = [
            asyncio.create_task(self._resync_loop()),
            asyncio.create_task(self._dispatch_loop()),
        ]
        await asyncio.gather(*self._loop_tasks, return_exceptions=True)

    async def stop(self):
        """Stop the loops and wait for in-flight passes to finish."""
        logger.info("Stopping Claim Controller")
        self.running = False

        for handle in self._retry_timers.values():
            handle.cancel()
        self._retry_timers.clear()

        for task in self._loop_tasks:
            if not task.done():
                task.cancel()

        if self._pass_tasks:
            logger.info(f"Waiting for {len(self._pass_tasks)} in-flight pass(es)")
            await asyncio.gather(*self._pass_tasks, return_exceptions=True)

    # ==================== Queueing ====================

    def enqueue(self, key: ObjectKey) -> None:
        """Queue a claim for a reconcile pass unless it is already queued."""
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    async def trigger_reconciliation(self, key: ObjectKey) -> None:
        """Reconcile a claim now instead of waiting for resync or backoff."""
        logger.info(f"Triggering reconciliation for claim {key}")
        handle = self._retry_timers.pop(key, None)
        if handle is not None:
            handle.cancel()
        self.enqueue(key)

    async def on_claim_event(self, event_type: str, key: ObjectKey) -> None:
        """Callback handed to input plugins."""
        logger.debug(f"Claim event {event_type} for {key}")
        await self.trigger_reconciliation(key)

    def compute_backoff(self, attempts: int) -> float:
        """
        Delay before retrying a claim that has failed ``attempts`` times before.

        Exponential in the attempt count, capped at ``backoff_max_delay`` and
        spread by ±``backoff_jitter_factor``.
        """
        exponent = min(attempts, MAX_BACKOFF_EXPONENT)
        delay = min(
            self.config.backoff_base_delay * (2**exponent),
            self.config.backoff_max_delay,
        )
        jitter = delay * self.config.backoff_jitter_factor * (random.random() * 2 - 1)
        return max(0.0, delay + jitter)

    # ==================== Loops ====================

    async def find_pending_keys(self) -> List[ObjectKey]:
        """
        List claims that need a pass.

        That is every claim still waiting for a bucket, plus the claim
        identity of every binding whose claim no longer exists.
        """
        claims = await self.store.list(RecordKind.CLAIM)
        existing = {claim.key for claim in claims}
        keys = [claim.key for claim in claims if should_provision(claim)]

        bindings = await self.store.list(RecordKind.BINDING)
        for binding in bindings:
            if binding.claim_ref is not None and binding.claim_ref not in existing:
                keys.append(binding.claim_ref)
        return keys

    async def _resync_loop(self):
        """Periodically queue everything that needs reconciliation."""
        while self.running:
            try:
                keys = await self.find_pending_keys()
                if keys:
                    logger.info(f"Found {len(keys)} claims needing reconciliation")
                for key in keys:
                    self.enqueue(key)

                await asyncio.sleep(self.reconcile_interval)

            except StoreError as e:
                logger.error(f"Error listing claims: {e}")
                await asyncio.sleep(10)

            except Exception as e:
                logger.error(f"Error in resync loop: {e}", exc_info=True)
                await asyncio.sleep(10)

    async def _dispatch_loop(self):
        """Start a pass for every queued claim."""
        while self.running:
            key = await self._queue.get()
            self._queued.discard(key)

            if key in self._in_flight:
                self._dirty.add(key)
                continue

            self._in_flight.add(key)
            task = asyncio.create_task(self._reconcile_key(key))
            self._pass_tasks.add(task)
            task.add_done_callback(self._pass_tasks.discard)

    async def _reconcile_key(self, key: ObjectKey) -> ReconcileResult:
        """Run one pass for a claim and schedule what comes next."""
        try:
            async with self.semaphore:
                try:
                    result = await self.reconciler.reconcile(key)
                except Exception as e:
                    logger.error(f"Error reconciling {key}: {e}", exc_info=True)
                    result = ReconcileResult(error=e)
                self._handle_result(key, result)
                return result
        finally:
            self._in_flight.discard(key)
            if key in self._dirty:
                self._dirty.discard(key)
                self.enqueue(key)

    def _handle_result(self, key: ObjectKey, result: ReconcileResult) -> None:
        if result.success:
            self._attempts.pop(key, None)
            if result.requeue:
                self.enqueue(key)
            return

        attempts = self._attempts.get(key, 0)
        delay = self.compute_backoff(attempts)
        self._attempts[key] = attempts + 1
        logger.warning(
            f"Reconcile of {key} failed (attempt {attempts + 1}), "
            f"retrying in {delay:.1f}s: {result.message}"
        )

        if not self.running:
            return
        previous = self._retry_timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._retry_timers[key] = loop.call_later(delay, self._retry, key)

    def _retry(self, key: ObjectKey) -> None:
        self._retry_timers.pop(key, None)
        self.enqueue(key)
