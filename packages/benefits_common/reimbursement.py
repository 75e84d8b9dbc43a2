"""Suggested reimbursement amounts derived from a monthly gross salary."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

FLOOR = Decimal("2018.36")
SALARY_PERCENTAGE = Decimal("0.90")


@dataclass(slots=True)
class Suggestion:
    """Suggested amount together with the rule that produced it."""

    amount: Decimal
    rule: str


def calculate_reimbursement(salary: Decimal) -> Decimal:
    """Return the advisory reimbursement for ``salary``.

    Salaries whose 90% share does not exceed :data:`FLOOR` are reimbursed at
    the floor; higher salaries are reimbursed at 90%. A zero or negative
    salary yields zero rather than the floor.
    """

    if salary <= 0:
        return Decimal("0")
    cap = salary * SALARY_PERCENTAGE
    if cap <= FLOOR:
        return FLOOR
    return cap


def describe_suggestion(salary: Decimal) -> Suggestion:
    """Return the suggested amount and whether the floor or the share applied."""

    amount = calculate_reimbursement(salary)
    if amount == 0:
        return Suggestion(amount=amount, rule="none")
    if amount == FLOOR:
        return Suggestion(amount=amount, rule="floor")
    return Suggestion(amount=amount, rule="percentage")


def parse_salary(raw: Optional[str]) -> Decimal:
    """Convert free-form salary input to a non-negative :class:`Decimal`.

    Blank, unparseable and negative values are clamped to zero, matching how
    the request form treats the calculator field.
    """

    try:
        value = Decimal((raw or "").strip().replace(",", "."))
    except InvalidOperation:
        return Decimal("0")
    if not value.is_finite() or value < 0:
        return Decimal("0")
    return value
