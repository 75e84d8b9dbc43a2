"""Common domain models and helpers shared across benefits apps."""

from .reimbursement import (
    FLOOR,
    SALARY_PERCENTAGE,
    Suggestion,
    calculate_reimbursement,
    describe_suggestion,
    parse_salary,
)
from .requests import (
    DEFAULT_REQUEST_TYPE,
    POLOS,
    RELATIONSHIPS,
    Attachment,
    AuditEvent,
    BenefitRequest,
    Dependent,
    InvoiceMetadata,
    NewRequest,
    Option,
    RequestStatus,
)

__all__ = [
    "FLOOR",
    "SALARY_PERCENTAGE",
    "DEFAULT_REQUEST_TYPE",
    "POLOS",
    "RELATIONSHIPS",
    "Attachment",
    "AuditEvent",
    "BenefitRequest",
    "Dependent",
    "InvoiceMetadata",
    "NewRequest",
    "Option",
    "RequestStatus",
    "Suggestion",
    "calculate_reimbursement",
    "describe_suggestion",
    "parse_salary",
]
