"""Bulk delivery pipeline: a bounded buffer drained by a fixed pool of workers.

The producer enqueues documents without waiting for a round trip; a fixed number
of worker threads (one backend connection each) take small batches off the buffer
and send them as bulk requests. A full buffer blocks the producer, which is the
backpressure point.

Accounting lives in a DeliveryLedger: pending (accepted but not settled) plus
delivered / dropped / cancelled totals, guarded by one condition variable so that
wait_drained() is an explicit completion signal instead of a polled counter.

Retry policy per batch (tenacity):
- DeliveryTransientError -> exponential backoff, only undelivered documents resent,
  at most PipelineConfig.max_attempts attempts; the backoff sleep wakes on cancel.
- DeliveryPermanentError or retries exhausted -> documents logged and dropped.
Either way every document is settled exactly once so the pipeline never stalls.
No ordering is guaranteed across documents.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import List, Optional, Protocol, Sequence

import tenacity
from pydantic import BaseModel

from stackindex.backend import is_retryable_status
from stackindex.cancellation import CancellationToken
from stackindex.config import PipelineConfig
from stackindex.errors import (
    Cancelled,
    DeliveryError,
    DeliveryPermanentError,
    DeliveryTransientError,
    PipelineStateError,
)
from stackindex.schemas import BulkAction, BulkItemResult, IndexableDocument

logger = logging.getLogger(__name__)


class Backend(Protocol):
    def bulk(self, actions: Sequence[BulkAction]) -> List[BulkItemResult]: ...


class DeliveryStats(BaseModel):
    """Snapshot of pipeline accounting."""
    pending: int = 0
    enqueued: int = 0
    delivered: int = 0
    dropped: int = 0
    cancelled: int = 0


class DeliveryLedger:
    """Pending counter plus settlement totals, guarded by one condition."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._pending = 0
        self._enqueued = 0
        self._delivered = 0
        self._dropped = 0
        self._cancelled = 0
        self._closed = False

    @property
    def pending(self) -> int:
        with self._cond:
            return self._pending

    def accept(self, n: int = 1) -> None:
        with self._cond:
            self._pending += n
            self._enqueued += n

    def rollback(self, n: int = 1) -> None:
        """Undo accept() for documents that never reached the buffer."""
        with self._cond:
            self._enqueued -= n
            if self._closed:
                self._cancelled -= n
                return
            self._pending -= n
            if self._pending == 0:
                self._cond.notify_all()

    def settle(self, n: int, outcome: str) -> None:
        if n <= 0:
            return
        with self._cond:
            if self._closed:
                # already counted as cancelled by close()
                logger.debug("Ignoring late settlement of %d documents as %s", n, outcome)
                return
            if outcome == "delivered":
                self._delivered += n
            elif outcome == "dropped":
                self._dropped += n
            else:
                self._cancelled += n
            self._pending -= n
            if self._pending == 0:
                self._cond.notify_all()

    def close(self) -> int:
        """Settle everything still pending as cancelled and ignore later settlements.

        Returns the number of documents that were still pending.
        """
        with self._cond:
            stranded = self._pending
            self._cancelled += stranded
            self._pending = 0
            self._closed = True
            self._cond.notify_all()
            return stranded

    def wait_for_zero(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout=timeout)

    def snapshot(self) -> DeliveryStats:
        with self._cond:
            return DeliveryStats(
                pending=self._pending,
                enqueued=self._enqueued,
                delivered=self._delivered,
                dropped=self._dropped,
                cancelled=self._cancelled,
            )


class BulkDeliveryPipeline:
    """Buffer documents and deliver them over a fixed pool of worker threads.

    Args:
        backend: Anything with ``bulk(actions) -> list[BulkItemResult]``.
        config: Explicit pipeline configuration.
        cancel_token: Optional shared cancellation token.

    Lifecycle: start() once, enqueue() any number of times, wait_drained() or a
    CompletionMonitor, then stop().
    """

    def __init__(
        self,
        backend: Backend,
        config: Optional[PipelineConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.config = config or PipelineConfig()
        self._backend = backend
        self._cancel = cancel_token or CancellationToken()
        self._queue: "queue.Queue[IndexableDocument]" = queue.Queue(maxsize=self.config.buffer_size)
        self._ledger = DeliveryLedger()
        self._stopping = threading.Event()
        self._threads: List[threading.Thread] = []
        self._state_lock = threading.Lock()
        self._started = False
        self._stopped = False

    # ----- public API -----

    def start(self, worker_count: Optional[int] = None) -> None:
        """Start ``worker_count`` delivery workers (default: config.workers).

        Raises:
            PipelineStateError: if the pipeline was already started.
            ValueError: if worker_count < 1.
        """
        count = self.config.workers if worker_count is None else worker_count
        if count < 1:
            raise ValueError(f"worker_count must be >= 1, got {count}")
        with self._state_lock:
            if self._started:
                raise PipelineStateError("pipeline already started")
            self._started = True
            for i in range(count):
                t = threading.Thread(target=self._run_worker, args=(i,), name=f"stackindex-worker-{i}", daemon=True)
                self._threads.append(t)
                t.start()
        logger.info("Started %d delivery workers (buffer=%d, batch=%d)", count, self.config.buffer_size, self.config.batch_size)

    def enqueue(self, doc: IndexableDocument, timeout: Optional[float] = None) -> None:
        """Add a document to the buffer, blocking while it is full.

        Raises:
            PipelineStateError: if called before start() or after stop().
            Cancelled: if the cancellation token fires while blocked.
            queue.Full: if ``timeout`` seconds pass without free buffer space.
        """
        if not self._started:
            raise PipelineStateError("enqueue called before start()")
        # Count before the put so a worker can never settle a document first
        with self._state_lock:
            if self._stopping.is_set():
                raise PipelineStateError("enqueue called after stop()")
            self._ledger.accept(1)
        deadline = None if timeout is None else time.monotonic() + timeout
        poll = self.config.dequeue_poll_seconds
        try:
            while True:
                if self._cancel.is_cancelled():
                    raise Cancelled("enqueue cancelled")
                wait = poll
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise queue.Full()
                    wait = min(wait, remaining)
                # Serialized with stop() so nothing lands in the buffer after it is drained
                with self._state_lock:
                    if self._stopping.is_set():
                        raise PipelineStateError("pipeline stopped while enqueue was blocked")
                    try:
                        self._queue.put(doc, timeout=wait)
                        return
                    except queue.Full:
                        pass
        except (Cancelled, PipelineStateError, queue.Full):
            self._ledger.rollback(1)
            raise

    def pending_count(self) -> int:
        """Documents accepted but not yet delivered, dropped or abandoned."""
        return self._ledger.pending

    def wait_drained(self, timeout: Optional[float] = None) -> bool:
        """Block until pending_count() is zero. Returns False if ``timeout`` elapsed."""
        return self._ledger.wait_for_zero(timeout)

    @property
    def stats(self) -> DeliveryStats:
        return self._ledger.snapshot()

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel

    def stop(self, timeout: Optional[float] = None) -> None:
        """Let in-flight batches finish, then stop the workers.

        ``timeout`` bounds the whole shutdown; workers still running after it are
        left behind (they are daemon threads). Documents still sitting in the buffer
        or held by such workers are abandoned and counted as cancelled.
        A no-op if the pipeline was never started or is already stopped.
        """
        with self._state_lock:
            if not self._started or self._stopped:
                return
            self._stopped = True
            self._stopping.set()
        deadline = None if timeout is None else time.monotonic() + timeout
        for t in self._threads:
            t.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
            if t.is_alive():
                logger.warning("Worker %s did not stop within %ss", t.name, timeout)

        abandoned = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            abandoned += 1
        if abandoned:
            logger.warning("Abandoned %d buffered documents on stop", abandoned)
            self._ledger.settle(abandoned, "cancelled")
        stranded = self._ledger.close()
        if stranded:
            logger.warning("Abandoned %d in-flight documents held by unfinished workers", stranded)
        logger.info("Delivery pipeline stopped: %s", self.stats)

    # ----- workers -----

    def _next_batch(self) -> Optional[List[IndexableDocument]]:
        try:
            first = self._queue.get(timeout=self.config.dequeue_poll_seconds)
        except queue.Empty:
            return None
        batch = [first]
        while len(batch) < self.config.batch_size:
            try:
                batch.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return batch

    def _run_worker(self, worker_id: int) -> None:
        logger.debug("Worker %d running", worker_id)
        while not self._stopping.is_set() and not self._cancel.is_cancelled():
            batch = self._next_batch()
            if batch:
                self._deliver(batch, worker_id)
        logger.debug("Worker %d exiting", worker_id)

    def _to_action(self, doc: IndexableDocument) -> BulkAction:
        return BulkAction(
            index=self.config.index_name,
            doc_type=self.config.doc_type,
            doc_id=doc.doc_id,
            timestamp=doc.event_time,
            body=doc.to_source(self.config.doc_type),
        )

    def _attempt(self, docs: List[IndexableDocument]) -> None:
        """One bulk request. Settles what it can; raises for what is left."""
        if self._cancel.is_cancelled():
            raise Cancelled("delivery cancelled")
        try:
            results = self._backend.bulk([self._to_action(d) for d in docs])
        except DeliveryError as exc:
            raise type(exc)(str(exc), documents=docs, status=exc.status) from exc
        if len(results) != len(docs):
            raise DeliveryPermanentError(f"backend returned {len(results)} results for {len(docs)} documents", documents=docs)

        delivered = 0
        retry: List[IndexableDocument] = []
        for doc, result in zip(docs, results):
            if result.ok:
                delivered += 1
            elif is_retryable_status(result.status):
                retry.append(doc)
            else:
                logger.error("Dropping document %s: HTTP %d %s", doc.doc_id, result.status, result.error or "")
                self._ledger.settle(1, "dropped")
        self._ledger.settle(delivered, "delivered")
        if retry:
            raise DeliveryTransientError(f"{len(retry)} documents rejected with retryable status", documents=retry)

    def _log_retry(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is None:
            return
        logger.warning(
            "[RETRY] bulk attempt %d failed: %s: %s",
            retry_state.attempt_number,
            type(exc).__name__,
            exc,
        )

    def _deliver(self, batch: List[IndexableDocument], worker_id: int) -> None:
        remaining = list(batch)
        retrying = tenacity.Retrying(
            retry=tenacity.retry_if_exception_type(DeliveryTransientError),
            stop=tenacity.stop_after_attempt(self.config.max_attempts)
            | tenacity.stop_when_event_set(self._cancel.event),
            wait=tenacity.wait_exponential(
                multiplier=self.config.backoff_initial_seconds,
                max=self.config.backoff_max_seconds,
            ),
            sleep=self._cancel.wait,
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    try:
                        self._attempt(remaining)
                    except DeliveryError as exc:
                        remaining = list(exc.documents)
                        raise
                    remaining = []
        except Cancelled:
            logger.warning("Worker %d abandoned %d documents on cancellation", worker_id, len(remaining))
            self._ledger.settle(len(remaining), "cancelled")
        except DeliveryTransientError as exc:
            if self._cancel.is_cancelled():
                logger.warning("Worker %d abandoned %d documents on cancellation", worker_id, len(remaining))
                self._ledger.settle(len(remaining), "cancelled")
            else:
                logger.error("Dropping %d documents after %d attempts: %s", len(remaining), self.config.max_attempts, exc)
                self._ledger.settle(len(remaining), "dropped")
        except DeliveryPermanentError as exc:
            logger.error("Dropping %d documents: %s", len(remaining), exc)
            self._ledger.settle(len(remaining), "dropped")
        except Exception:
            # Settle anyway so one broken batch cannot wedge the pipeline
            logger.exception("Worker %d: unexpected delivery failure, dropping %d documents", worker_id, len(remaining))
            self._ledger.settle(len(remaining), "dropped")
