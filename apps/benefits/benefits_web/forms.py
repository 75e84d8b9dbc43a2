"""Form parsing and validation helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from itertools import zip_longest
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from werkzeug.datastructures import FileStorage, MultiDict

from packages.benefits_common import (
    POLOS,
    RELATIONSHIPS,
    Dependent,
    parse_salary,
)

from .editors import DependentListEditor, InvoiceCollector, PendingInvoice

CPF_RE = re.compile(r"^\d{11}$")
MIN_AMOUNT = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000.00")
MIN_DEPENDENT_NAME = 2

POLO_CODES = frozenset(option.code for option in POLOS)
RELATIONSHIP_CODES = frozenset(option.code for option in RELATIONSHIPS)


@dataclass(slots=True)
class RequestDraft:
    """Editable request fields as typed on the form."""

    cpf: str = ""
    amount: Decimal = Decimal("0")
    polo: str = ""
    salary: Decimal = Decimal("0")

    def reset(self) -> None:
        self.cpf = ""
        self.amount = Decimal("0")
        self.polo = ""
        self.salary = Decimal("0")


def _parse_decimal(raw: Optional[str]) -> Decimal:
    """Return ``raw`` as a :class:`Decimal`, or zero when it is not a number."""

    try:
        value = Decimal((raw or "").strip().replace(",", "."))
    except InvalidOperation:
        return Decimal("0")
    return value if value.is_finite() else Decimal("0")


def _optional_decimal(raw: Optional[str]) -> Optional[Decimal]:
    if not (raw or "").strip():
        return None
    return _parse_decimal(raw)


def normalise_cpf(raw: Optional[str]) -> str:
    """Strip non-digits and keep at most 11 characters, as the CPF input does."""

    return re.sub(r"\D", "", raw or "")[:11]


def validate_dependent(dependent: Dependent) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if len(dependent.name.strip()) < MIN_DEPENDENT_NAME:
        errors["name"] = "Dependent name must have at least 2 characters."
    if not dependent.relationship:
        errors["relationship"] = "Select the relationship."
    elif dependent.relationship not in RELATIONSHIP_CODES:
        errors["relationship"] = "Unknown relationship."
    return errors


def validate_submission(
    draft: RequestDraft, dependents: Iterable[Dependent] = ()
) -> Dict[str, str]:
    """Validate the request fields and dependents.

    Returns a mapping of field name to message; an empty mapping means the
    submission is valid. Dependent errors are keyed as
    ``dependents[<index>].<field>``.
    """

    errors: Dict[str, str] = {}
    if not draft.cpf:
        errors["cpf"] = "CPF is required."
    elif not CPF_RE.match(draft.cpf):
        errors["cpf"] = "CPF must have 11 numeric digits."
    if draft.amount < MIN_AMOUNT:
        errors["amount"] = "Amount must be greater than zero."
    elif draft.amount > MAX_AMOUNT:
        errors["amount"] = f"Amount must not exceed {MAX_AMOUNT:,.2f}."
    elif draft.amount != draft.amount.quantize(MIN_AMOUNT):
        errors["amount"] = "Amount must have at most 2 decimal places."
    if not draft.polo:
        errors["polo"] = "Select the work site."
    elif draft.polo not in POLO_CODES:
        errors["polo"] = "Unknown work site."
    if draft.salary < 0:
        errors["salary"] = "Salary must be a valid amount."
    for index, dependent in enumerate(dependents):
        for field, message in validate_dependent(dependent).items():
            errors[f"dependents[{index}].{field}"] = message
    return errors


def parse_request_form(
    form: Mapping[str, str], files: Optional[MultiDict] = None
) -> Tuple[RequestDraft, DependentListEditor, InvoiceCollector]:
    """Build the editable request state from a multipart submission.

    Dependents are read from the parallel ``dependent_name`` and
    ``dependent_relationship`` lists. Invoices are read from
    ``invoice_description``/``invoice_number``/``invoice_amount`` and the
    ``invoice_file`` uploads, paired by position. Unparseable numbers become
    zero so validation reports them instead of the parser.
    """

    getlist = getattr(form, "getlist", None)

    def _values(key: str) -> Sequence[str]:
        if getlist is not None:
            return getlist(key)
        value = form.get(key)
        return [value] if value is not None else []

    draft = RequestDraft(
        cpf=normalise_cpf(form.get("cpf")),
        amount=_parse_decimal(form.get("amount")),
        polo=(form.get("polo") or "").strip(),
        salary=parse_salary(form.get("salary")),
    )

    dependents = DependentListEditor()
    for name, relationship in zip_longest(
        _values("dependent_name"), _values("dependent_relationship"), fillvalue=""
    ):
        dependents.add()
        index = len(dependents) - 1
        dependents.update(index, "name", (name or "").strip())
        dependents.update(index, "relationship", (relationship or "").strip())

    uploads = list(files.getlist("invoice_file")) if files is not None else []
    entries = []
    for description, number, amount, upload in zip_longest(
        _values("invoice_description"),
        _values("invoice_number"),
        _values("invoice_amount"),
        uploads,
    ):
        file: Optional[FileStorage] = upload if upload and upload.filename else None
        if file is None and not (description or number or amount):
            continue
        entries.append(
            PendingInvoice(
                file=file,
                description=(description or "").strip(),
                number=(number or "").strip(),
                amount=_optional_decimal(amount),
            )
        )
    invoices = InvoiceCollector()
    invoices.replace(entries)
    return draft, dependents, invoices
