"""
procurement_services.dispatch -- Document & notification dispatch.

Responsibility:
    After a lifecycle transition commits, build a structured document
    model, have the external renderer turn it into bytes, and hand a
    message descriptor to the external dispatcher.  Runs out of band on a
    worker pool with its own retry policy.

Architecture position:
    Services layer.  ``ProcurementWorkflow`` publishes a ``DispatchEvent``
    after each committed submit / approve / reject / new conversion.  This
    module never touches the ledger store.

Invariants:
    - Dispatch never raises into the triggering operation and never
      re-opens or reverses a committed transition.
    - Each task is attempted at most ``max_attempts`` times with
      exponential backoff (tenacity); exhausted tasks become dead letters
      that can be listed (``failed()``) and re-queued (``retry_failed()``).
    - Every outcome is logged.

Failure modes:
    - Renderer raising, dispatcher raising, or dispatcher returning False
      -> ``DispatchError`` inside the worker; retried, then dead-lettered.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from procurement_config.schema import DispatchConfig
from procurement_kernel.exceptions import DispatchError
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_modules.master_data.models import Project, Supplier
from procurement_modules.purchase_orders.models import PurchaseOrder
from procurement_modules.requisitions.models import Requisition

logger = get_logger("services.dispatch")


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class DispatchEventType(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONVERTED = "converted"


class RecipientRole(str, Enum):
    REQUESTER = "requester"
    FINANCE = "finance"
    ADMIN = "admin"
    SUPPLIER = "supplier"


RECIPIENTS: dict[DispatchEventType, frozenset[RecipientRole]] = {
    DispatchEventType.SUBMITTED: frozenset({RecipientRole.FINANCE, RecipientRole.ADMIN}),
    DispatchEventType.APPROVED: frozenset({RecipientRole.REQUESTER}),
    DispatchEventType.REJECTED: frozenset({RecipientRole.REQUESTER}),
    DispatchEventType.CONVERTED: frozenset({RecipientRole.SUPPLIER, RecipientRole.REQUESTER}),
}


@dataclass(frozen=True)
class DispatchEvent:
    """A committed transition worth telling people about."""
    event_type: DispatchEventType
    requisition: Requisition
    actor_id: str
    purchase_order: PurchaseOrder | None = None
    project: Project | None = None
    supplier: Supplier | None = None


@dataclass(frozen=True)
class DocumentLine:
    line_number: int
    description: str
    quantity: int
    unit: str
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class DocumentModel:
    """Structured input for the renderer: header fields plus an item table."""
    document_type: str
    number: str
    title: str
    header: tuple[tuple[str, str], ...]
    items: tuple[DocumentLine, ...]
    total: Decimal


@dataclass(frozen=True)
class MessageDescriptor:
    """Structured input for the dispatcher."""
    recipients: frozenset[RecipientRole]
    subject: str
    body: str
    attachment_filename: str | None = None
    attachment: bytes | None = None
    media_type: str = "application/pdf"
    context: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


class Renderer(Protocol):
    def render(self, document: DocumentModel) -> bytes: ...


class Dispatcher(Protocol):
    def send(self, message: MessageDescriptor) -> bool: ...


class DispatchTaskStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class DispatchTask:
    """Mutable bookkeeping for one outbound task; guarded by the service lock."""
    task_id: str
    event: DispatchEvent
    status: DispatchTaskStatus = DispatchTaskStatus.PENDING
    attempts: int = 0
    last_error: str | None = None


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_document(event: DispatchEvent) -> DocumentModel:
    """Document model from committed snapshots."""
    req = event.requisition
    project = event.project
    supplier = event.supplier
    common = (
        ("Project", project.name if project else str(req.project_id)),
        ("Contract number", project.contract_number if project else ""),
        ("Supplier", supplier.name if supplier else str(req.supplier_id)),
        ("Delivery date", req.delivery_date.isoformat()),
        ("Delivery address", req.delivery_address),
    )

    if event.event_type is DispatchEventType.CONVERTED and event.purchase_order is not None:
        po = event.purchase_order
        return DocumentModel(
            document_type="purchase_order",
            number=po.po_number,
            title=f"Purchase Order {po.po_number}",
            header=(
                ("PO number", po.po_number),
                ("Requisition", req.requisition_number),
                ("Issue date", po.issue_date.isoformat()),
            ) + common,
            items=tuple(
                DocumentLine(i.line_number, i.description, i.quantity, i.unit, i.unit_price, i.line_total)
                for i in po.items
            ),
            total=po.total_amount,
        )

    header = (
        ("Requisition", req.requisition_number),
        ("Status", req.status.value),
        ("Request date", req.request_date.isoformat()),
    ) + common
    if req.rejection_reason:
        header += (("Rejection reason", req.rejection_reason),)
    return DocumentModel(
        document_type="requisition",
        number=req.requisition_number,
        title=f"Requisition {req.requisition_number}",
        header=header,
        items=tuple(
            DocumentLine(i.line_number, i.description, i.quantity, i.unit, i.unit_price, i.line_total)
            for i in req.items
        ),
        total=req.total_amount,
    )


_SUBJECTS = {
    DispatchEventType.SUBMITTED: "Requisition {number} submitted for approval",
    DispatchEventType.APPROVED: "Requisition {number} approved",
    DispatchEventType.REJECTED: "Requisition {number} rejected",
    DispatchEventType.CONVERTED: "Purchase order {number} issued",
}


def build_message(event: DispatchEvent, document: DocumentModel, rendered: bytes) -> MessageDescriptor:
    req = event.requisition
    body_lines = [f"{label}: {value}" for label, value in document.header]
    body_lines.append(f"Total: {document.total}")
    context: dict[str, Any] = {
        "event_type": event.event_type.value,
        "requisition_id": str(req.id),
        "requisition_number": req.requisition_number,
        "requester_id": req.requester_id,
        "actor_id": event.actor_id,
    }
    if event.purchase_order is not None:
        context["purchase_order_id"] = str(event.purchase_order.id)
    if event.supplier is not None:
        context["supplier_email"] = event.supplier.email
    return MessageDescriptor(
        recipients=RECIPIENTS[event.event_type],
        subject=_SUBJECTS[event.event_type].format(number=document.number),
        body="\n".join(body_lines),
        attachment_filename=f"{document.number}.pdf",
        attachment=rendered,
        context=context,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class DispatchService:
    """
    Out-of-band document rendering and notification delivery.

    Contract:
        ``publish`` never raises for delivery problems; it returns the task
        so callers may ``wait`` on it for a bounded time.

    Non-goals:
        Durable queueing across restarts; dead letters live in memory.
    """

    def __init__(
        self,
        renderer: Renderer,
        dispatcher: Dispatcher,
        config: DispatchConfig | None = None,
    ):
        self._renderer = renderer
        self._dispatcher = dispatcher
        self._config = config or DispatchConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.worker_count,
            thread_name_prefix="procurement-dispatch",
        )
        self._lock = threading.Lock()
        self._tasks: dict[str, DispatchTask] = {}
        self._futures: dict[str, Future] = {}

    @property
    def wait_timeout(self) -> float:
        return self._config.wait_timeout

    def publish(self, event: DispatchEvent) -> DispatchTask | None:
        """Queue ``event``; None when dispatch is disabled."""
        if not self._config.enabled:
            logger.debug(
                "dispatch_disabled_skip",
                extra={"event_type": event.event_type.value},
            )
            return None
        task = DispatchTask(task_id=str(uuid4()), event=event)
        with self._lock:
            self._tasks[task.task_id] = task
        self._submit(task)
        logger.info(
            "dispatch_task_queued",
            extra={
                "task_id": task.task_id,
                "event_type": event.event_type.value,
                "requisition_id": str(event.requisition.id),
            },
        )
        return task

    def wait(self, task: DispatchTask | None, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` seconds; True if the task has finished."""
        if task is None:
            return True
        with self._lock:
            future = self._futures.get(task.task_id)
        if future is None:
            return True
        done, _ = wait([future], timeout=timeout)
        if not done:
            logger.info(
                "dispatch_wait_timed_out",
                extra={"task_id": task.task_id, "timeout": timeout},
            )
        return bool(done)

    def failed(self) -> list[DispatchTask]:
        """Dead letters: tasks that exhausted their attempts."""
        with self._lock:
            return [t for t in self._tasks.values() if t.status is DispatchTaskStatus.FAILED]

    def delivered(self) -> list[DispatchTask]:
        with self._lock:
            return [t for t in self._tasks.values() if t.status is DispatchTaskStatus.DELIVERED]

    def retry_failed(self) -> list[DispatchTask]:
        """Re-queue every dead letter with a fresh attempt budget."""
        with self._lock:
            requeued = [t for t in self._tasks.values() if t.status is DispatchTaskStatus.FAILED]
            for task in requeued:
                task.status = DispatchTaskStatus.PENDING
                task.attempts = 0
        for task in requeued:
            logger.info("dispatch_task_requeued", extra={"task_id": task.task_id})
            self._submit(task)
        return requeued

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for every queued task; True if all finished in time."""
        with self._lock:
            futures = list(self._futures.values())
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # -- internals -----------------------------------------------------------

    def _submit(self, task: DispatchTask) -> None:
        future = self._executor.submit(self._run, task)
        with self._lock:
            self._futures[task.task_id] = future

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(
                multiplier=self._config.backoff_multiplier,
                max=self._config.backoff_max,
            ),
            retry=retry_if_exception_type(DispatchError),
            reraise=True,
        )

    def _run(self, task: DispatchTask) -> None:
        event = task.event
        with LogContext.bind(
            task_id=task.task_id,
            requisition_id=str(event.requisition.id),
        ):
            try:
                for attempt in self._retrying():
                    with attempt:
                        self._attempt(task)
            except DispatchError as exc:
                self._finish(task, DispatchTaskStatus.FAILED, exc.reason)
                logger.error(
                    "dispatch_task_dead_lettered",
                    extra={
                        "event_type": event.event_type.value,
                        "attempts": task.attempts,
                        "stage": exc.stage,
                        "reason": exc.reason,
                    },
                )
            except RetryError as exc:
                self._finish(task, DispatchTaskStatus.FAILED, str(exc))
                logger.error("dispatch_task_dead_lettered", extra={"attempts": task.attempts})
            except Exception as exc:
                self._finish(task, DispatchTaskStatus.FAILED, repr(exc))
                logger.exception(
                    "dispatch_task_crashed",
                    extra={"event_type": event.event_type.value},
                )
            else:
                self._finish(task, DispatchTaskStatus.DELIVERED, None)
                logger.info(
                    "dispatch_task_delivered",
                    extra={
                        "event_type": event.event_type.value,
                        "attempts": task.attempts,
                    },
                )

    def _attempt(self, task: DispatchTask) -> None:
        with self._lock:
            task.attempts += 1
            attempt_number = task.attempts

        document = build_document(task.event)
        try:
            rendered = self._renderer.render(document)
        except Exception as exc:
            self._record_error(task, attempt_number, "render", repr(exc))
            raise DispatchError(task.task_id, "render", repr(exc)) from exc

        message = build_message(task.event, document, rendered)
        try:
            sent = self._dispatcher.send(message)
        except Exception as exc:
            self._record_error(task, attempt_number, "send", repr(exc))
            raise DispatchError(task.task_id, "send", repr(exc)) from exc
        if not sent:
            self._record_error(task, attempt_number, "send", "dispatcher reported failure")
            raise DispatchError(task.task_id, "send", "dispatcher reported failure")

    def _record_error(self, task: DispatchTask, attempt_number: int, stage: str, reason: str) -> None:
        with self._lock:
            task.last_error = reason
        logger.warning(
            "dispatch_attempt_failed",
            extra={
                "attempt": attempt_number,
                "max_attempts": self._config.max_attempts,
                "stage": stage,
                "reason": reason,
            },
        )

    def _finish(self, task: DispatchTask, status: DispatchTaskStatus, error: str | None) -> None:
        with self._lock:
            task.status = status
            if error is not None:
                task.last_error = error
