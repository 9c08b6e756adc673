"""Delivery engine: the worker pool behind webhook dispatch.

Each endpoint has its own FIFO of delivery ids. Endpoints with queued work
are placed on a shared ready queue; a worker takes an endpoint, claims it,
serves the delivery at the head of its FIFO and releases it. An endpoint is
claimed by at most one worker at a time, so it never has more than one
delivery InFlight and its deliveries start in submission order while
different endpoints proceed in parallel.

Pausing an endpoint (disable or auto-disable) cancels its in-flight HTTP
call, drops its FIFO and moves its RetryWait records back to Pending.
Resuming re-enqueues its Pending records in creation order.

If storing an outcome fails, the delivery stays at the head of its FIFO and
the endpoint is retried after the poll interval; a record found InFlight
there is moved back to Pending first and sent again.
"""

from __future__ import annotations

import asyncio
from collections import deque

from courier.config import Settings
from courier.logging import bind_context, get_logger, unbind_context
from courier.models import DeliveryAttempt, DeliveryStatus, Outcome, OutcomeKind, WebhookEndpoint
from courier.storage import CourierStorage

from .dispatcher import Dispatcher
from .registry import EndpointRegistry
from .scheduler import RetryScheduler

logger = get_logger(__name__)

_DISPATCHABLE = (DeliveryStatus.PENDING, DeliveryStatus.RETRY_WAIT)


class DeliveryEngine:
    """Runs delivery workers and the retry timer.

    Args:
        storage: Backing store.
        registry: Endpoint registry, for outcome bookkeeping.
        dispatcher: Sends attempts over HTTP.
        scheduler: Applies outcomes to deliveries.
        settings: Supplies ``worker_count`` and ``poll_interval_seconds``.
    """

    def __init__(
        self,
        storage: CourierStorage,
        registry: EndpointRegistry,
        dispatcher: Dispatcher,
        scheduler: RetryScheduler,
        settings: Settings,
    ) -> None:
        self.storage = storage
        self.registry = registry
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.settings = settings

        self._queues: dict[str, deque[str]] = {}
        self._queued: set[str] = set()
        self._ready: asyncio.Queue[str] = asyncio.Queue()
        self._scheduled: set[str] = set()
        self._claimed: set[str] = set()
        self._paused: set[str] = set()
        self._deferred: dict[str, asyncio.TimerHandle] = {}
        self._inflight: dict[str, asyncio.Task[Outcome]] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._timer: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def queue_depth(self, endpoint_id: str) -> int:
        return len(self._queues.get(endpoint_id, ()))

    def in_flight(self) -> set[str]:
        """Endpoints with an HTTP call in progress."""
        return {endpoint_id for endpoint_id, task in self._inflight.items() if not task.done()}

    # Queueing

    def enqueue(self, delivery: DeliveryAttempt) -> bool:
        """Append a delivery to its endpoint's FIFO.

        Returns:
            False if the endpoint is paused or the delivery is already queued.
        """
        if delivery.endpoint_id in self._paused or delivery.id in self._queued:
            return False
        self._queues.setdefault(delivery.endpoint_id, deque()).append(delivery.id)
        self._queued.add(delivery.id)
        self._signal(delivery.endpoint_id)
        return True

    def wake(self, endpoint_id: str) -> None:
        """End a rate-limit deferral early and make the endpoint ready."""
        handle = self._deferred.pop(endpoint_id, None)
        if handle is not None:
            handle.cancel()
        self._signal(endpoint_id)

    def _signal(self, endpoint_id: str) -> None:
        if (
            endpoint_id in self._claimed
            or endpoint_id in self._scheduled
            or endpoint_id in self._deferred
            or not self._queues.get(endpoint_id)
        ):
            return
        self._scheduled.add(endpoint_id)
        self._ready.put_nowait(endpoint_id)

    def _pop(self, endpoint_id: str, delivery_id: str) -> None:
        queue = self._queues.get(endpoint_id)
        if queue and queue[0] == delivery_id:
            queue.popleft()
        self._queued.discard(delivery_id)

    def _drop_queue(self, endpoint_id: str) -> int:
        queue = self._queues.pop(endpoint_id, None) or deque()
        self._queued.difference_update(queue)
        return len(queue)

    def _defer(self, endpoint_id: str, delay: float, reason: str = "rate_limit") -> None:
        loop = asyncio.get_running_loop()
        self._deferred[endpoint_id] = loop.call_later(max(delay, 0.0), self.wake, endpoint_id)
        logger.debug("Endpoint deferred", endpoint_id=endpoint_id, retry_after=delay, reason=reason)

    # Endpoint pause / resume

    async def pause_endpoint(self, endpoint_id: str) -> None:
        """Stop all delivery activity for an endpoint without failing anything."""
        self._paused.add(endpoint_id)
        dropped = self._drop_queue(endpoint_id)
        handle = self._deferred.pop(endpoint_id, None)
        if handle is not None:
            handle.cancel()

        task = self._inflight.get(endpoint_id)
        cancelled = task is not None and not task.done()
        if cancelled:
            # The owning worker reverts the InFlight record when it sees the cancellation
            task.cancel()

        reverted = await self.storage.revert_to_pending(
            endpoint_id, (DeliveryStatus.RETRY_WAIT,), self.scheduler.clock()
        )
        logger.info(
            "Endpoint paused",
            endpoint_id=endpoint_id,
            dropped=dropped,
            cancelled_in_flight=cancelled,
            reverted=len(reverted),
        )

    async def resume_endpoint(self, endpoint_id: str) -> int:
        """Re-enqueue an endpoint's Pending deliveries in creation order.

        Returns:
            Number of deliveries enqueued.
        """
        self._paused.discard(endpoint_id)
        enqueued = 0
        for delivery in await self.storage.pending_deliveries(endpoint_id):
            if self.enqueue(delivery):
                enqueued += 1
        logger.info("Endpoint resumed", endpoint_id=endpoint_id, enqueued=enqueued)
        return enqueued

    # Retry timer

    async def enqueue_due_retries(self) -> int:
        """Enqueue RetryWait deliveries whose backoff has elapsed."""
        enqueued = 0
        for delivery in await self.scheduler.due():
            if self.enqueue(delivery):
                enqueued += 1
        if enqueued:
            logger.debug("Due retries enqueued", count=enqueued)
        return enqueued

    async def _retry_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.poll_interval_seconds)
            try:
                await self.enqueue_due_retries()
            except Exception:
                logger.exception("Retry poll failed")

    # Workers

    async def _worker(self, index: int) -> None:
        while True:
            endpoint_id = await self._ready.get()
            self._scheduled.discard(endpoint_id)
            self._claimed.add(endpoint_id)
            bind_context(worker=index, endpoint_id=endpoint_id)
            try:
                await self._serve(endpoint_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                # The FIFO is left as is; the head is served again after the delay
                delay = self.settings.poll_interval_seconds
                logger.exception("Delivery worker error", retry_after=delay)
                if endpoint_id not in self._paused:
                    self._defer(endpoint_id, delay, reason="error")
            finally:
                unbind_context("worker", "endpoint_id", "delivery_id")
                self._claimed.discard(endpoint_id)
                if self._running:
                    self._signal(endpoint_id)
                self._ready.task_done()

    async def _serve(self, endpoint_id: str) -> None:
        """Process the delivery at the head of one endpoint's FIFO."""
        queue = self._queues.get(endpoint_id)
        if not queue or endpoint_id in self._paused:
            return
        delivery_id = queue[0]
        bind_context(delivery_id=delivery_id)

        delivery = await self.storage.get_delivery(delivery_id)
        if delivery is not None and delivery.status is DeliveryStatus.IN_FLIGHT:
            # Left InFlight by a failed outcome write; only this worker serves the endpoint
            delivery = await self.scheduler.cancel(delivery)
        if delivery is None or delivery.status not in _DISPATCHABLE:
            self._pop(endpoint_id, delivery_id)
            return

        endpoint = await self.storage.get_endpoint(endpoint_id)
        if endpoint is None or not endpoint.is_active:
            self._paused.add(endpoint_id)
            self._drop_queue(endpoint_id)
            return

        deferred = await self.dispatcher.acquire(endpoint)
        if deferred is not None:
            self._defer(endpoint_id, deferred.retry_after or 0.0)
            return
        if endpoint_id in self._paused:
            return

        delivery = await self.scheduler.begin_attempt(delivery)
        if endpoint_id in self._paused:
            await self.scheduler.cancel(delivery)
            return

        task = asyncio.create_task(self._send(delivery, endpoint))
        self._inflight[endpoint_id] = task
        try:
            outcome = await task
        except asyncio.CancelledError:
            self._pop(endpoint_id, delivery_id)
            await self.scheduler.cancel(delivery)
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return
        finally:
            self._inflight.pop(endpoint_id, None)

        # The head stays queued until its outcome is stored
        delivery = await self.scheduler.apply(delivery, endpoint, outcome)
        self._pop(endpoint_id, delivery_id)
        if endpoint_id in self._paused and delivery.status is DeliveryStatus.RETRY_WAIT:
            # Paused while the outcome was being written
            await self.storage.revert_to_pending(
                endpoint_id, (DeliveryStatus.RETRY_WAIT,), self.scheduler.clock()
            )

        _, auto_disabled = await self.registry.record_outcome(
            endpoint_id, outcome.kind is OutcomeKind.SUCCESS
        )
        if auto_disabled:
            await self.pause_endpoint(endpoint_id)

    async def _send(self, delivery: DeliveryAttempt, endpoint: WebhookEndpoint) -> Outcome:
        try:
            return await self.dispatcher.send(delivery, endpoint)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected dispatch error")
            return Outcome(kind=OutcomeKind.RETRYABLE_FAILURE, error_message=str(e) or type(e).__name__)

    # Lifecycle

    async def start(self) -> None:
        """Recover interrupted work and start the workers and retry timer."""
        if self._running:
            return
        now = self.scheduler.clock()
        recovered = await self.storage.revert_to_pending(None, (DeliveryStatus.IN_FLIGHT,), now)
        self._paused = {e.id for e in await self.storage.list_endpoints() if not e.is_active}

        self._running = True
        pending = 0
        for delivery in await self.storage.pending_deliveries():
            if self.enqueue(delivery):
                pending += 1
        await self.enqueue_due_retries()

        self._workers = [
            asyncio.create_task(self._worker(i), name=f"courier-worker-{i}")
            for i in range(self.settings.worker_count)
        ]
        self._timer = asyncio.create_task(self._retry_loop(), name="courier-retry-timer")
        logger.info(
            "Delivery engine started",
            workers=self.settings.worker_count,
            recovered=len(recovered),
            pending=pending,
        )

    async def stop(self) -> None:
        """Cancel workers and the timer. In-flight deliveries revert to Pending."""
        if not self._running:
            return
        self._running = False
        tasks = [*self._workers]
        if self._timer is not None:
            tasks.append(self._timer)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for handle in self._deferred.values():
            handle.cancel()
        self._deferred.clear()
        self._queues.clear()
        self._queued.clear()
        self._scheduled.clear()
        self._claimed.clear()
        self._ready = asyncio.Queue()
        self._workers = []
        self._timer = None
        logger.info("Delivery engine stopped")

    async def wait_idle(self) -> None:
        """Wait until no endpoint is ready or being served.

        Deferred endpoints and RetryWait records do not count as work.
        Only meaningful while the engine is running.
        """
        await self._ready.join()
