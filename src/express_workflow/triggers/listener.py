"""Trigger listener: bridges an inbound queue to the workflow executor.

For each message the listener:

1. reserves an in-flight slot (at most `max_in_flight` runs execute at once, so
   a slow workflow pushes back on the queue instead of piling up work)
2. durably records a new run as started
3. acknowledges the message
4. hands the run to a worker thread and goes back to the queue

A message is only acknowledged once its run is recorded, so a crash can cause a
redelivery but never a lost trigger. With `idempotent_execution_ids` the
execution id is derived from the message id and a redelivered message maps to
the run that already exists. If that run is still RUNNING and not being
executed by this listener, the previous attempt died with it; the run is
handed to a worker again and continues after its last recorded step.

A body that is not valid UTF-8 is recorded as a FAILED run and acknowledged.

Run outcomes are kept in the execution log; they are not reported back to the
queue.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from types import TracebackType

from pydantic import JsonValue

from express_workflow.triggers.queue import InboundMessage, InboundQueue
from express_workflow.workflow.executor import WorkflowExecutor
from express_workflow.workflow.records import ExecutionRecord, execution_id_for_message
from express_workflow.workflow.registry import WorkflowDefinition

logger = logging.getLogger(__name__)


def message_input(message: InboundMessage) -> JsonValue:
    """Initial workflow input for a message: parsed JSON, or the raw text.

    Raises:
        UnicodeDecodeError: A bytes body that is not UTF-8.
    """

    body = message.body
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    try:
        value: JsonValue = json.loads(body)
    except json.JSONDecodeError:
        return body
    return value


class TriggerListener:
    def __init__(
        self,
        *,
        queue: InboundQueue,
        executor: WorkflowExecutor,
        definition: WorkflowDefinition,
        max_in_flight: int = 8,
        receive_wait_seconds: float = 1.0,
        poll_interval_seconds: float = 1.0,
        idempotent_execution_ids: bool = True,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.queue = queue
        self.executor = executor
        self.definition = definition
        self.max_in_flight = max_in_flight
        self.receive_wait_seconds = receive_wait_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.idempotent_execution_ids = idempotent_execution_ids

        self._slots = threading.BoundedSemaphore(max_in_flight)
        self._pool = self._new_pool()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._in_flight = 0
        self._active: set[str] = set()
        self._idle = threading.Condition()

    @property
    def in_flight(self) -> int:
        with self._idle:
            return self._in_flight

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Consume the queue on a background thread."""

        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.serve_forever, name="trigger-listener", daemon=True
        )
        self._thread.start()

    def stop(self, *, wait: bool = True, timeout: float | None = None) -> None:
        """Stop consuming. With `wait`, also let in-flight runs finish."""

        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._pool.shutdown(wait=wait)
        # A shut-down pool rejects submissions; keep one ready for a later start().
        self._pool = self._new_pool()
        logger.info("Trigger listener stopped", extra={"in_flight": self.in_flight})

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no run is in flight. Returns False on timeout."""

        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout=timeout)

    def serve_forever(self) -> None:
        logger.info(
            "Trigger listener started",
            extra={
                "workflow_id": self.definition.workflow_id,
                "max_in_flight": self.max_in_flight,
            },
        )
        while not self._stop.is_set():
            try:
                handled = self.poll_once()
            except Exception:
                logger.exception("Receiving from the inbound queue failed")
                self._stop.wait(self.poll_interval_seconds)
                continue
            if not handled and not self.receive_wait_seconds:
                self._stop.wait(self.poll_interval_seconds)

    def poll_once(self) -> bool:
        """Receive and dispatch at most one message.

        Returns:
            True if a message was received.
        """

        if not self._slots.acquire(timeout=self.poll_interval_seconds):
            return False

        dispatched = False
        try:
            message = self.queue.receive(timeout_seconds=self.receive_wait_seconds)
            if message is None:
                return False
            dispatched = self._dispatch(message)
            return True
        finally:
            if not dispatched:
                self._slots.release()

    def _dispatch(self, message: InboundMessage) -> bool:
        execution_id = (
            execution_id_for_message(self.definition.workflow_id, message.message_id)
            if self.idempotent_execution_ids
            else None
        )
        try:
            value = message_input(message)
        except UnicodeDecodeError as e:
            self._reject(message, execution_id, e)
            return False

        try:
            record, created = self.executor.start(
                self.definition, value, execution_id=execution_id
            )
        except Exception:
            logger.exception(
                "Could not record execution start; leaving message for redelivery",
                extra={"message_id": message.message_id},
            )
            return False

        self._acknowledge(message, record)

        extra = {
            "message_id": message.message_id,
            "execution_id": record.execution_id,
            "status": record.status.value,
        }
        if not created and record.status.is_terminal:
            logger.info("Message already triggered an execution", extra=extra)
            return False
        if not self._claim(record.execution_id):
            logger.info("Execution for this message is already in progress", extra=extra)
            return False

        if created:
            logger.info("Execution triggered", extra=extra)
        else:
            logger.warning("Resuming interrupted execution", extra=extra)
        try:
            self._pool.submit(self._execute, record)
        except RuntimeError:
            # Pool already shut down; the run stays RUNNING in the log.
            self._finished(record.execution_id)
            logger.warning(
                "Listener is stopping; execution not run",
                extra={"execution_id": record.execution_id},
            )
            return False
        return True

    def _reject(
        self, message: InboundMessage, execution_id: str | None, error: UnicodeDecodeError
    ) -> None:
        try:
            record = self.executor.reject(self.definition, error, execution_id=execution_id)
        except Exception:
            logger.exception(
                "Could not record rejected message; leaving it for redelivery",
                extra={"message_id": message.message_id},
            )
            return
        self._acknowledge(message, record)

    def _acknowledge(self, message: InboundMessage, record: ExecutionRecord) -> None:
        try:
            self.queue.acknowledge(message.message_id)
        except Exception:
            # The run is recorded; with derived ids a redelivery maps back to it.
            logger.exception(
                "Acknowledging message failed",
                extra={"message_id": message.message_id, "execution_id": record.execution_id},
            )

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_in_flight, thread_name_prefix="workflow-run")

    def _execute(self, record: ExecutionRecord) -> None:
        try:
            self.executor.execute(self.definition, record)
        except Exception:
            logger.exception(
                "Execution crashed outside of its task units",
                extra={"execution_id": record.execution_id},
            )
        finally:
            self._slots.release()
            self._finished(record.execution_id)

    def _claim(self, execution_id: str) -> bool:
        with self._idle:
            if execution_id in self._active:
                return False
            self._active.add(execution_id)
            self._in_flight += 1
            return True

    def _finished(self, execution_id: str) -> None:
        with self._idle:
            self._active.discard(execution_id)
            self._in_flight -= 1
            self._idle.notify_all()

    def __enter__(self) -> TriggerListener:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
