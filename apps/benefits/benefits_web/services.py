"""Business logic helpers for the Benefits UI."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from packages.benefits_common import (
    POLOS,
    RELATIONSHIPS,
    AuditEvent,
    BenefitRequest,
    Option,
    RequestStatus,
    describe_suggestion,
    parse_salary,
)

from .accounts import UserAccount
from .repositories import RequestsRepository


def polos_for_select() -> Iterable[Option]:
    """Return work sites presented on the request form."""

    return POLOS


def relationships_for_select() -> Iterable[Option]:
    """Return dependent relationships presented on the request form."""

    return RELATIONSHIPS


def suggest_amount(raw_salary: Optional[str]) -> Dict[str, Any]:
    """Return the calculator panel payload for a raw salary value."""

    salary = parse_salary(raw_salary)
    suggestion = describe_suggestion(salary)
    return {
        "salary": f"{salary:.2f}",
        "suggested_amount": f"{suggestion.amount:.2f}",
        "rule": suggestion.rule,
    }


def can_view(user: UserAccount, request: BenefitRequest) -> bool:
    return user.is_manager or request.requester_id == user.id


def approve_request(
    repository: RequestsRepository, request_id: int, manager: UserAccount, note: str = ""
) -> BenefitRequest:
    """Approve a pending request.

    Raises:
        InvalidTransitionError: If the request is not pending.
    """

    return repository.transition(
        request_id,
        expected=RequestStatus.PENDING,
        target=RequestStatus.APPROVED,
        actor_id=manager.id,
        note=note,
    )


def reject_request(
    repository: RequestsRepository, request_id: int, manager: UserAccount, note: str = ""
) -> BenefitRequest:
    """Reject a pending request.

    Raises:
        InvalidTransitionError: If the request is not pending.
    """

    return repository.transition(
        request_id,
        expected=RequestStatus.PENDING,
        target=RequestStatus.REJECTED,
        actor_id=manager.id,
        note=note,
    )


def request_to_dict(request: BenefitRequest) -> Dict[str, Any]:
    """Return a JSON-ready representation of ``request``."""

    return {
        "id": request.id,
        "requester_id": request.requester_id,
        "type": request.type,
        "amount": f"{request.amount:.2f}",
        "polo": request.polo,
        "cpf": request.cpf,
        "status": request.status.value,
        "dependents": [d.to_dict() for d in request.dependents],
        "invoices": [i.to_dict() for i in request.invoices],
        "attachments": [
            {
                "id": a.id,
                "storage_path": a.storage_path,
                "file_name": a.file_name,
                "size_bytes": a.size_bytes,
            }
            for a in request.attachments
        ],
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "decided_at": request.decided_at.isoformat() if request.decided_at else None,
        "decided_by": request.decided_by,
        "decision_note": request.decision_note,
    }


def event_to_dict(event: AuditEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "event_type": event.event_type,
        "actor_id": event.actor_id,
        "payload": event.payload,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }
