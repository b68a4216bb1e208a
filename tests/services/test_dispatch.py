"""
DispatchService: document building, recipients, retries and dead letters.

Backoff is configured to zero so retry tests run instantly.
"""

from dataclasses import replace

import pytest

from procurement_config.schema import DispatchConfig, ProcurementConfig
from procurement_modules.requisitions.models import RequisitionStatus
from procurement_services.approval_workflow import ProcurementWorkflow
from procurement_services.dispatch import (
    DispatchEvent,
    DispatchEventType,
    DispatchService,
    DispatchTaskStatus,
    RecipientRole,
    build_document,
    build_message,
)

from tests.fakes import FakeDispatcher, FakeRenderer


@pytest.fixture
def store(memory_store):
    return memory_store


@pytest.fixture
def dispatching_workflow(store, clock, dispatch_service, dispatch_config):
    config = replace(ProcurementConfig(), dispatch=dispatch_config)
    return ProcurementWorkflow(store, clock=clock, config=config, dispatch=dispatch_service)


@pytest.fixture
def submitted_event(workflow, requester, header, items, project, supplier):
    req = workflow.create_requisition(requester, header, items)
    req = workflow.submit_requisition(requester, req.id)
    return DispatchEvent(
        event_type=DispatchEventType.SUBMITTED,
        requisition=req,
        actor_id=requester.id,
        project=project,
        supplier=supplier,
    )


class TestBuilders:

    def test_requisition_document(self, submitted_event):
        document = build_document(submitted_event)
        assert document.document_type == "requisition"
        assert document.number == submitted_event.requisition.requisition_number
        assert dict(document.header)["Project"] == "Riverside Tower"
        assert [line.line_total for line in document.items] == [
            i.line_total for i in submitted_event.requisition.items
        ]
        assert document.total == submitted_event.requisition.total_amount

    def test_message_recipients_and_attachment(self, submitted_event):
        document = build_document(submitted_event)
        message = build_message(submitted_event, document, b"%PDF")
        assert message.recipients == frozenset({RecipientRole.FINANCE, RecipientRole.ADMIN})
        assert message.attachment == b"%PDF"
        assert message.attachment_filename == f"{document.number}.pdf"
        assert message.context["supplier_email"] == "orders@acme.example"
        assert "submitted" in message.subject

    @pytest.mark.parametrize(
        "event_type, recipients",
        [
            (DispatchEventType.APPROVED, {RecipientRole.REQUESTER}),
            (DispatchEventType.REJECTED, {RecipientRole.REQUESTER}),
        ],
    )
    def test_decision_recipients(self, submitted_event, event_type, recipients):
        event = replace(submitted_event, event_type=event_type)
        message = build_message(event, build_document(event), b"")
        assert message.recipients == frozenset(recipients)


class TestDelivery:

    def test_delivered(self, dispatch_service, dispatcher, renderer, submitted_event):
        task = dispatch_service.publish(submitted_event)
        assert dispatch_service.wait(task, timeout=5)
        assert task.status is DispatchTaskStatus.DELIVERED
        assert task.attempts == 1
        assert len(dispatcher.sent) == 1
        assert len(renderer.documents) == 1

    def test_transient_failure_retried(self, dispatch_config, renderer, submitted_event):
        dispatcher = FakeDispatcher(fail_times=2)
        service = DispatchService(renderer, dispatcher, dispatch_config)
        try:
            task = service.publish(submitted_event)
            assert service.wait(task, timeout=5)
            assert task.status is DispatchTaskStatus.DELIVERED
            assert task.attempts == 3
        finally:
            service.shutdown()

    def test_exhausted_task_is_dead_lettered(self, dispatch_config, renderer, submitted_event, captured_logs):
        dispatcher = FakeDispatcher(fail_times=10, raise_on_fail=True)
        service = DispatchService(renderer, dispatcher, dispatch_config)
        try:
            task = service.publish(submitted_event)
            assert service.wait(task, timeout=5)
            assert task.status is DispatchTaskStatus.FAILED
            assert task.attempts == dispatch_config.max_attempts
            assert dispatcher.attempts == dispatch_config.max_attempts
            assert "smtp down" in task.last_error
            assert service.failed() == [task]
            messages = [r["message"] for r in captured_logs()]
            assert messages.count("dispatch_attempt_failed") == dispatch_config.max_attempts
            assert "dispatch_task_dead_lettered" in messages
        finally:
            service.shutdown()

    def test_retry_failed_requeues(self, dispatch_config, renderer, submitted_event):
        dispatcher = FakeDispatcher(fail_times=dispatch_config.max_attempts)
        service = DispatchService(renderer, dispatcher, dispatch_config)
        try:
            task = service.publish(submitted_event)
            service.wait(task, timeout=5)
            assert service.failed() == [task]

            requeued = service.retry_failed()
            assert requeued == [task]
            assert service.drain(timeout=5)
            assert task.status is DispatchTaskStatus.DELIVERED
            assert service.failed() == []
            assert service.delivered() == [task]
        finally:
            service.shutdown()

    def test_renderer_failure_retried(self, dispatch_config, dispatcher, submitted_event):
        service = DispatchService(FakeRenderer(fail_times=1), dispatcher, dispatch_config)
        try:
            task = service.publish(submitted_event)
            service.wait(task, timeout=5)
            assert task.status is DispatchTaskStatus.DELIVERED
            assert task.attempts == 2
        finally:
            service.shutdown()

    def test_disabled(self, renderer, dispatcher, submitted_event):
        service = DispatchService(renderer, dispatcher, DispatchConfig(enabled=False))
        try:
            assert service.publish(submitted_event) is None
            assert service.wait(None) is True
            assert dispatcher.sent == []
        finally:
            service.shutdown()


class TestWorkflowIntegration:

    def test_lifecycle_events(self, dispatching_workflow, dispatch_service, dispatcher,
                              requester, finance, header, items):
        req = dispatching_workflow.create_requisition(requester, header, items)
        dispatching_workflow.submit_requisition(requester, req.id)
        dispatching_workflow.approve_requisition(finance, req.id)
        dispatching_workflow.convert_to_purchase_order(finance, req.id)
        dispatching_workflow.convert_to_purchase_order(finance, req.id)
        assert dispatch_service.drain(timeout=5)

        kinds = sorted(m.context["event_type"] for m in dispatcher.sent)
        assert kinds == ["approved", "converted", "submitted"]
        converted = next(m for m in dispatcher.sent if m.context["event_type"] == "converted")
        assert converted.recipients == frozenset({RecipientRole.SUPPLIER, RecipientRole.REQUESTER})
        assert converted.attachment_filename.startswith("PO-2024-")

    def test_rejection_notifies_requester(self, dispatching_workflow, dispatch_service, dispatcher,
                                          requester, finance, header, items):
        req = dispatching_workflow.create_requisition(requester, header, items)
        dispatching_workflow.submit_requisition(requester, req.id)
        dispatching_workflow.reject_requisition(finance, req.id, reason="Duplicate order")
        assert dispatch_service.drain(timeout=5)

        rejected = next(m for m in dispatcher.sent if m.context["event_type"] == "rejected")
        assert "Duplicate order" in rejected.body

    def test_dispatch_failure_keeps_transition(self, store, clock, renderer, dispatch_config,
                                              requester, header, items):
        dispatcher = FakeDispatcher(fail_times=100)
        service = DispatchService(renderer, dispatcher, dispatch_config)
        workflow = ProcurementWorkflow(
            store, clock=clock,
            config=replace(ProcurementConfig(), dispatch=dispatch_config),
            dispatch=service,
        )
        try:
            req = workflow.create_requisition(requester, header, items)
            submitted = workflow.submit_requisition(requester, req.id)
            assert service.drain(timeout=5)

            assert submitted.status == RequisitionStatus.PENDING_APPROVAL
            assert workflow.get_requisition(requester, req.id).status == RequisitionStatus.PENDING_APPROVAL
            assert len(service.failed()) == 1
        finally:
            service.shutdown()
