"""Request submission workflow.

A submission moves through ``idle -> validating -> creating_request ->
uploading_invoices -> done``. Missing identity, creation failures and upload
failures end in ``errored``. Validation failures return to ``idle`` without
touching the database or storage.

The request record is created before any invoice is uploaded. When an upload
fails, or the stored files cannot be linked to the request, the request stays
in the ``created`` status with no attachments and any files already stored
remain in storage. The user is shown a generic failure message while the
specific cause is kept on the result, in the log and in the audit trail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import FileStorage

from packages.benefits_common import (
    Attachment,
    AuditEvent,
    BenefitRequest,
    NewRequest,
    RequestStatus,
)

from .accounts import UserAccount
from .editors import DependentListEditor, InvoiceCollector
from .errors import AttachmentLinkError, CreationError, IdentityMissingError
from .forms import RequestDraft, validate_submission
from .repositories import RequestsRepository
from .storage import FileUploadGateway, UploadError, file_size

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Error creating request. Please try again."
IDENTITY_MISSING_MESSAGE = "User not found."
VALIDATION_MESSAGE = "Please correct the highlighted errors."
SUCCESS_MESSAGE = "Request created successfully."


class SubmissionState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CREATING_REQUEST = "creating_request"
    UPLOADING_INVOICES = "uploading_invoices"
    DONE = "done"
    ERRORED = "errored"


@dataclass(slots=True)
class Notification:
    """User-facing message, the equivalent of a toast."""

    level: str
    title: str
    description: str


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class CollectingNotifier:
    """Notifier that keeps messages so views can return them."""

    def __init__(self) -> None:
        self.messages: List[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.messages.append(notification)


@dataclass
class SubmissionResult:
    """Outcome of :meth:`RequestSubmissionWorkflow.submit`."""

    state: SubmissionState
    request: Optional[BenefitRequest] = None
    errors: Dict[str, str] = field(default_factory=dict)
    message: str = ""
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.state == SubmissionState.DONE


class InvoiceLinker:
    """Uploads invoice files for a request and links the stored paths to it."""

    def __init__(self, gateway: FileUploadGateway, repository: RequestsRepository):
        self._gateway = gateway
        self._repository = repository

    def upload_invoices(
        self,
        request_id: int,
        files: Sequence[FileStorage],
        *,
        actor_id: Optional[int] = None,
    ) -> List[Attachment]:
        """Upload ``files`` under the request id and record the attachments.

        Nothing is linked when the gateway raises :class:`UploadError`.

        Raises:
            UploadError: If a file cannot be stored.
            AttachmentLinkError: If the files were stored but the attachment
                rows could not be written. The stored keys are on ``paths``.
        """

        if not files:
            return []
        sizes = [file_size(file) for file in files]
        paths = self._gateway.upload(str(request_id), files)
        attachments = [
            Attachment(
                request_id=request_id,
                storage_path=path,
                file_name=file.filename or "",
                size_bytes=size,
            )
            for path, file, size in zip(paths, files, sizes)
        ]
        try:
            return self._repository.attach_invoices(
                request_id, attachments, actor_id=actor_id
            )
        except SQLAlchemyError as exc:
            raise AttachmentLinkError(str(exc), paths) from exc


class RequestSubmissionWorkflow:
    """Validates, creates and attaches invoices for one requester's submission.

    Args:
        identity: Account submitting the request, or ``None`` when the
            session has no user.
        repository: Creation collaborator that persists the request.
        linker: Uploads queued invoices and links them to the new request.
        notifier: Receives the success or failure message for the user.
        on_submitted: Optional hook called with the request once it reaches
            ``pending``, used to send notification emails.
    """

    def __init__(
        self,
        *,
        identity: Optional[UserAccount],
        repository: RequestsRepository,
        linker: InvoiceLinker,
        notifier: Notifier,
        on_submitted: Optional[Callable[[BenefitRequest], None]] = None,
    ):
        self.identity = identity
        self._repository = repository
        self._linker = linker
        self._notifier = notifier
        self._on_submitted = on_submitted
        self.state = SubmissionState.IDLE
        self.history: List[SubmissionState] = [self.state]

    def _enter(self, state: SubmissionState) -> None:
        logger.debug("Submission state %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _fail(
        self,
        error: Exception,
        message: str = GENERIC_FAILURE_MESSAGE,
        request: Optional[BenefitRequest] = None,
    ) -> SubmissionResult:
        self._enter(SubmissionState.ERRORED)
        self._notifier.notify(Notification("error", "Error", message))
        return SubmissionResult(
            state=self.state, request=request, message=message, error=error
        )

    def submit(
        self,
        draft: RequestDraft,
        dependents: DependentListEditor,
        invoices: InvoiceCollector,
        *,
        idempotency_key: Optional[str] = None,
    ) -> SubmissionResult:
        """Run one submission attempt.

        Every call starts a new creation attempt; duplicates are only
        avoided when the caller passes the same ``idempotency_key``.
        """

        self._enter(SubmissionState.VALIDATING)
        errors = validate_submission(draft, dependents)
        if errors:
            self._enter(SubmissionState.IDLE)
            return SubmissionResult(
                state=self.state, errors=errors, message=VALIDATION_MESSAGE
            )
        if self.identity is None:
            logger.warning("Submission attempted without a requester identity")
            return self._fail(
                IdentityMissingError(IDENTITY_MISSING_MESSAGE),
                IDENTITY_MISSING_MESSAGE,
            )

        payload = NewRequest(
            amount=draft.amount,
            polo=draft.polo,
            cpf=draft.cpf,
            dependents=dependents.items,
            invoices=invoices.metadata(),
        )

        self._enter(SubmissionState.CREATING_REQUEST)
        try:
            created = self._repository.create_request(
                payload, self.identity.id, idempotency_key=idempotency_key
            )
        except CreationError as exc:
            logger.error("Error creating request for user %s: %s", self.identity.id, exc)
            return self._fail(exc)

        if created.status == RequestStatus.CREATED:
            files = invoices.files_to_upload()
            if files:
                self._enter(SubmissionState.UPLOADING_INVOICES)
                try:
                    self._linker.upload_invoices(
                        created.id, files, actor_id=self.identity.id
                    )
                except UploadError as exc:
                    logger.error("Invoice upload failed for request %s: %s", created.id, exc)
                    self._record_upload_failure(
                        created, exc.file_name, exc.cause, exc.uploaded_paths
                    )
                    return self._fail(exc, request=created)
                except AttachmentLinkError as exc:
                    logger.error("Could not link invoices to request %s: %s", created.id, exc)
                    self._record_upload_failure(created, None, exc.cause, exc.paths)
                    return self._fail(exc, request=created)
            try:
                created = self._repository.transition(
                    created.id,
                    expected=RequestStatus.CREATED,
                    target=RequestStatus.PENDING,
                    actor_id=self.identity.id,
                    event_type="SUBMITTED",
                )
            except SQLAlchemyError as exc:
                logger.error("Could not submit request %s: %s", created.id, exc)
                return self._fail(CreationError(str(exc)), request=created)
            if self._on_submitted is not None:
                self._on_submitted(created)
        else:
            logger.info(
                "Idempotency key %s matched request %s (%s)",
                idempotency_key,
                created.id,
                created.status.value,
            )

        draft.reset()
        dependents.clear()
        invoices.clear()
        self._enter(SubmissionState.DONE)
        self._notifier.notify(Notification("success", "Success!", SUCCESS_MESSAGE))
        return SubmissionResult(state=self.state, request=created, message=SUCCESS_MESSAGE)

    def _record_upload_failure(
        self,
        request: BenefitRequest,
        file_name: Optional[str],
        cause: str,
        orphaned_paths: List[str],
    ) -> None:
        try:
            self._repository.record_event(
                AuditEvent(
                    event_type="UPLOAD_FAILED",
                    request_id=request.id,
                    actor_id=self.identity.id if self.identity else None,
                    payload={
                        "file": file_name,
                        "cause": cause,
                        "orphaned_paths": orphaned_paths,
                    },
                )
            )
        except SQLAlchemyError:
            logger.exception("Could not audit upload failure for request %s", request.id)
