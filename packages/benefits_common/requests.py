"""Benefit request domain models.

These dataclasses describe reimbursement requests, their dependents and
invoice references. They intentionally avoid persistence concerns so the
models can be shared by the Flask UI, repositories and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

DEFAULT_REQUEST_TYPE = "outros"


class RequestStatus(str, Enum):
    """Lifecycle of a benefit request."""

    CREATED = "created"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(slots=True)
class Option:
    """Selectable value presented on the request form."""

    code: str
    label: str


POLOS: List[Option] = [
    Option(code="3M Sumaré", label="3M Sumaré"),
    Option(code="3M Itapetininga", label="3M Itapetininga"),
    Option(code="3M Manaus", label="3M Manaus"),
    Option(code="3M Ribeirão Preto", label="3M Ribeirão Preto"),
]

RELATIONSHIPS: List[Option] = [
    Option(code="spouse", label="Cônjuge"),
    Option(code="child", label="Filho(a)"),
    Option(code="parent", label="Pai/Mãe"),
    Option(code="sibling", label="Irmão(ã)"),
    Option(code="other", label="Outro"),
]


@dataclass(slots=True)
class Dependent:
    """Person declared on a request for benefit eligibility."""

    name: str = ""
    relationship: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "relationship": self.relationship}


@dataclass(slots=True)
class InvoiceMetadata:
    """Descriptive data for an invoice sent along with a new request."""

    description: str = ""
    number: str = ""
    amount: Optional[Decimal] = None
    storage_path: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "number": self.number,
            "amount": str(self.amount) if self.amount is not None else None,
            "storage_path": self.storage_path,
        }

    @classmethod
    def from_dict(cls, values: dict) -> "InvoiceMetadata":
        amount = values.get("amount")
        return cls(
            description=values.get("description", ""),
            number=values.get("number", ""),
            amount=Decimal(amount) if amount is not None else None,
            storage_path=values.get("storage_path"),
        )


@dataclass(slots=True)
class Attachment:
    """Invoice file stored in object storage and linked to a request."""

    request_id: int
    storage_path: str
    file_name: str
    size_bytes: int
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(slots=True)
class NewRequest:
    """Record shape accepted by the request-creation boundary.

    Construction fails with :class:`TypeError` when dependents or invoices
    are not the typed records above, and with :class:`ValueError` when the
    amount is not strictly positive.
    """

    amount: Decimal
    polo: str
    cpf: str
    type: str = DEFAULT_REQUEST_TYPE
    dependents: List[Dependent] = field(default_factory=list)
    invoices: List[InvoiceMetadata] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            raise TypeError("amount must be a Decimal")
        if self.amount <= 0:
            raise ValueError("amount must be greater than zero")
        for dependent in self.dependents:
            if not isinstance(dependent, Dependent):
                raise TypeError(f"unexpected dependent record: {dependent!r}")
        for invoice in self.invoices:
            if not isinstance(invoice, InvoiceMetadata):
                raise TypeError(f"unexpected invoice record: {invoice!r}")


@dataclass(slots=True)
class BenefitRequest:
    """Reimbursement request owned by a requester."""

    requester_id: int
    type: str
    amount: Decimal
    polo: str
    cpf: str
    status: RequestStatus = RequestStatus.CREATED
    id: Optional[int] = None
    dependents: List[Dependent] = field(default_factory=list)
    invoices: List[InvoiceMetadata] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[int] = None
    decision_note: str = ""

    def amount_in_minor_units(self) -> int:
        """Return the amount expressed in centavos."""

        return int((self.amount * 100).to_integral_value())

    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING


@dataclass(slots=True)
class AuditEvent:
    """Entry in the compliance audit trail of a request."""

    event_type: str
    request_id: Optional[int] = None
    actor_id: Optional[int] = None
    payload: dict = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[datetime] = None
