"""Tests for the request submission workflow state machine."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from packages.benefits_common import Dependent, NewRequest, RequestStatus

from benefits_web.editors import DependentListEditor, InvoiceCollector, PendingInvoice
from benefits_web.errors import AttachmentLinkError, CreationError, IdentityMissingError
from benefits_web.forms import RequestDraft
from benefits_web.storage import FileUploadGateway, UploadError
from benefits_web.workflow import (
    GENERIC_FAILURE_MESSAGE,
    CollectingNotifier,
    InvoiceLinker,
    RequestSubmissionWorkflow,
    SubmissionState as S,
)

from conftest import make_file, make_large_file


class SpyRepository:
    """Wraps a repository and counts creation calls."""

    def __init__(self, inner, fail: bool = False):
        self._inner = inner
        self.fail = fail
        self.create_calls = 0

    def create_request(self, *args, **kwargs):
        self.create_calls += 1
        if self.fail:
            raise CreationError("connection refused")
        return self._inner.create_request(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._inner, name)


def _draft() -> RequestDraft:
    return RequestDraft(
        cpf="12345678901",
        amount=Decimal("500.00"),
        polo="3M Sumaré",
        salary=Decimal("1500"),
    )


def _workflow(repo, gateway, identity, submitted=None):
    notifier = CollectingNotifier()
    workflow = RequestSubmissionWorkflow(
        identity=identity,
        repository=repo,
        linker=InvoiceLinker(gateway, repo),
        notifier=notifier,
        on_submitted=submitted.append if submitted is not None else None,
    )
    return workflow, notifier


def test_successful_submission_with_invoices(repo, storage, employee):
    """Two 1 MB invoices, no dependents: request pending, files linked, state cleared."""

    gateway = FileUploadGateway(storage)
    submitted = []
    workflow, notifier = _workflow(repo, gateway, employee, submitted)
    draft = _draft()
    dependents = DependentListEditor()
    invoices = InvoiceCollector(
        [
            PendingInvoice(file=make_file("nota1.pdf"), description="Consulta"),
            PendingInvoice(file=make_file("nota2.pdf"), description="Exame"),
        ]
    )

    result = workflow.submit(draft, dependents, invoices)

    assert result.ok
    assert workflow.history == [
        S.IDLE,
        S.VALIDATING,
        S.CREATING_REQUEST,
        S.UPLOADING_INVOICES,
        S.DONE,
    ]
    saved = repo.get_request(result.request.id)
    assert saved.requester_id == employee.id
    assert saved.amount == Decimal("500.00")
    assert saved.polo == "3M Sumaré"
    assert saved.cpf == "12345678901"
    assert saved.dependents == []
    assert saved.status == RequestStatus.PENDING
    assert [a.file_name for a in saved.attachments] == ["nota1.pdf", "nota2.pdf"]
    assert all(a.size_bytes == 1024 * 1024 for a in saved.attachments)
    for attachment in saved.attachments:
        owner, _, name = attachment.storage_path.partition("/")
        assert owner == str(saved.id)
        assert name.split("-", 1)[1] == attachment.file_name
        assert storage.exists(attachment.storage_path)

    assert submitted and submitted[0].id == saved.id
    assert draft == RequestDraft()
    assert len(dependents) == 0 and len(invoices) == 0
    assert notifier.messages[-1].level == "success"


def test_submission_without_invoices_skips_upload(repo, gateway, employee):
    workflow, _ = _workflow(repo, gateway, employee)
    dependents = DependentListEditor([Dependent("Maria", "spouse")])
    invoices = InvoiceCollector([PendingInvoice(description="metadata only")])

    result = workflow.submit(_draft(), dependents, invoices)

    assert result.ok
    assert S.UPLOADING_INVOICES not in workflow.history
    saved = repo.get_request(result.request.id)
    assert saved.dependents == [Dependent("Maria", "spouse")]
    assert saved.invoices[0].description == "metadata only"


def test_validation_failure_makes_no_remote_calls(repo, gateway, employee):
    spy = SpyRepository(repo)
    workflow, notifier = _workflow(spy, gateway, employee)
    draft = _draft()
    draft.cpf = "1234"
    dependents = DependentListEditor()
    dependents.add()

    result = workflow.submit(draft, dependents, InvoiceCollector())

    assert result.state == S.IDLE
    assert set(result.errors) == {
        "cpf",
        "dependents[0].name",
        "dependents[0].relationship",
    }
    assert spy.create_calls == 0
    assert notifier.messages == []
    assert draft.cpf == "1234"


def test_missing_identity_errors_without_creation(repo, gateway):
    spy = SpyRepository(repo)
    workflow, notifier = _workflow(spy, gateway, None)

    result = workflow.submit(_draft(), DependentListEditor(), InvoiceCollector())

    assert result.state == S.ERRORED
    assert isinstance(result.error, IdentityMissingError)
    assert spy.create_calls == 0
    assert notifier.messages[-1].level == "error"


def test_creation_failure_shows_generic_message(repo, gateway, employee):
    spy = SpyRepository(repo, fail=True)
    workflow, notifier = _workflow(spy, gateway, employee)
    draft = _draft()

    result = workflow.submit(draft, DependentListEditor(), InvoiceCollector())

    assert result.state == S.ERRORED
    assert workflow.history[-2:] == [S.CREATING_REQUEST, S.ERRORED]
    assert result.message == GENERIC_FAILURE_MESSAGE
    assert "connection refused" in str(result.error)
    assert notifier.messages[-1].description == GENERIC_FAILURE_MESSAGE
    assert draft.cpf == "12345678901"
    assert repo.list_requests() == []


def test_oversized_second_invoice_leaves_orphan(repo, storage, employee, tmp_path):
    """Second file of 60 MiB: request created, first file orphaned, workflow errored."""

    gateway = FileUploadGateway(storage)
    submitted = []
    workflow, notifier = _workflow(repo, gateway, employee, submitted)
    invoices = InvoiceCollector(
        [
            PendingInvoice(file=make_file("nota1.pdf")),
            PendingInvoice(file=make_large_file(tmp_path, "nota2.pdf", 60 * 1024 * 1024)),
        ]
    )

    result = workflow.submit(_draft(), DependentListEditor(), invoices)

    assert result.state == S.ERRORED
    assert workflow.history[-2:] == [S.UPLOADING_INVOICES, S.ERRORED]
    assert isinstance(result.error, UploadError)
    assert result.error.file_name == "nota2.pdf"
    assert result.message == GENERIC_FAILURE_MESSAGE
    assert submitted == []
    assert len(invoices) == 2

    saved = repo.get_request(result.request.id)
    assert saved.status == RequestStatus.CREATED
    assert saved.attachments == []
    orphans = storage.list(f"{saved.id}/")
    assert len(orphans) == 1 and orphans[0].endswith("-nota1.pdf")

    failure = repo.list_events(saved.id)[-1]
    assert failure.event_type == "UPLOAD_FAILED"
    assert failure.payload["file"] == "nota2.pdf"
    assert failure.payload["orphaned_paths"] == orphans


def test_retry_without_key_creates_duplicate(repo, gateway, employee):
    workflow, _ = _workflow(repo, gateway, employee)
    workflow.submit(_draft(), DependentListEditor(), InvoiceCollector())
    workflow.submit(_draft(), DependentListEditor(), InvoiceCollector())
    assert len(repo.list_requests()) == 2


def test_retry_with_same_key_reuses_request(repo, gateway, employee):
    submitted = []
    workflow, _ = _workflow(repo, gateway, employee, submitted)
    first = workflow.submit(
        _draft(), DependentListEditor(), InvoiceCollector(), idempotency_key="k-1"
    )
    second = workflow.submit(
        _draft(), DependentListEditor(), InvoiceCollector(), idempotency_key="k-1"
    )
    assert first.ok and second.ok
    assert first.request.id == second.request.id
    assert len(repo.list_requests()) == 1
    assert [r.id for r in submitted] == [first.request.id]


def test_linker_without_files_does_nothing(repo, gateway):
    assert InvoiceLinker(gateway, repo).upload_invoices(1, []) == []


def test_linker_does_not_link_on_upload_error(repo, storage, employee, tmp_path):
    gateway = FileUploadGateway(storage, max_bytes=5)
    saved = repo.create_request(
        NewRequest(amount=Decimal("10"), polo="3M Manaus", cpf="12345678901"),
        employee.id,
    )
    with pytest.raises(UploadError):
        InvoiceLinker(gateway, repo).upload_invoices(saved.id, [make_file("a.pdf", 6)])
    assert repo.get_request(saved.id).attachments == []


def test_oversized_amount_stops_at_validation(repo, gateway, employee):
    spy = SpyRepository(repo)
    workflow, _ = _workflow(spy, gateway, employee)
    draft = _draft()
    draft.amount = Decimal("1e20")

    result = workflow.submit(draft, DependentListEditor(), InvoiceCollector())

    assert result.state == S.IDLE
    assert "amount" in result.errors
    assert spy.create_calls == 0


def test_link_failure_errors_and_records_orphans(repo, storage, employee, monkeypatch):
    """Stored files whose attachment rows cannot be written end in errored."""

    def locked(*args, **kwargs):
        raise OperationalError(
            "INSERT INTO request_attachments", {}, Exception("database is locked")
        )

    monkeypatch.setattr(repo, "attach_invoices", locked)
    submitted = []
    workflow, notifier = _workflow(repo, FileUploadGateway(storage), employee, submitted)
    invoices = InvoiceCollector([PendingInvoice(file=make_file("nota.pdf", 10))])

    result = workflow.submit(_draft(), DependentListEditor(), invoices)

    assert result.state == S.ERRORED
    assert workflow.history[-2:] == [S.UPLOADING_INVOICES, S.ERRORED]
    assert isinstance(result.error, AttachmentLinkError)
    assert result.message == GENERIC_FAILURE_MESSAGE
    assert notifier.messages[-1].description == GENERIC_FAILURE_MESSAGE
    assert submitted == []

    saved = repo.get_request(result.request.id)
    assert saved.status == RequestStatus.CREATED
    assert saved.attachments == []
    stored = storage.list(f"{saved.id}/")
    assert len(stored) == 1 and result.error.paths == stored

    failure = repo.list_events(saved.id)[-1]
    assert failure.event_type == "UPLOAD_FAILED"
    assert failure.payload["orphaned_paths"] == stored
    assert "database is locked" in failure.payload["cause"]
