"""In-memory editors backing the request form.

Both editors hold the state a requester builds up before submitting: the
dependents being declared and the invoices being attached. Neither validates
its contents; validation happens when the request is submitted.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from decimal import Decimal
from typing import Iterable, List, Optional

from werkzeug.datastructures import FileStorage

from packages.benefits_common import Dependent, InvoiceMetadata

_DEPENDENT_FIELDS = {f.name for f in fields(Dependent)}


class DependentListEditor:
    """Ordered list of dependents with add/update/remove operations."""

    def __init__(self, dependents: Optional[Iterable[Dependent]] = None):
        self._items: List[Dependent] = list(dependents or [])

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    @property
    def items(self) -> List[Dependent]:
        """Return a copy of the current dependents."""

        return list(self._items)

    def add(self) -> Dependent:
        """Append an empty dependent and return it."""

        dependent = Dependent(name="", relationship="")
        self._items.append(dependent)
        return dependent

    def update(self, index: int, field: str, value: str) -> None:
        """Replace ``field`` of the dependent at ``index``.

        Raises:
            IndexError: If ``index`` is out of range.
            KeyError: If ``field`` is not a dependent attribute.
        """

        if field not in _DEPENDENT_FIELDS:
            raise KeyError(field)
        self._check_index(index)
        self._items[index] = replace(self._items[index], **{field: value})

    def remove(self, index: int) -> None:
        """Remove the dependent at ``index``; the rest keep their order."""

        self._check_index(index)
        del self._items[index]

    def clear(self) -> None:
        self._items.clear()

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._items):
            raise IndexError(f"Dependent index {index} out of range")


@dataclass(slots=True)
class PendingInvoice:
    """Invoice entry queued on the form, optionally with a file to upload."""

    file: Optional[FileStorage] = None
    description: str = ""
    number: str = ""
    amount: Optional[Decimal] = None
    storage_path: Optional[str] = None

    def to_metadata(self) -> InvoiceMetadata:
        return InvoiceMetadata(
            description=self.description,
            number=self.number,
            amount=self.amount,
            storage_path=self.storage_path,
        )


class InvoiceCollector:
    """Ordered collection of pending invoices handed off at submission."""

    def __init__(self, entries: Optional[Iterable[PendingInvoice]] = None):
        self._entries: List[PendingInvoice] = list(entries or [])

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[PendingInvoice]:
        return list(self._entries)

    def replace(self, entries: Iterable[PendingInvoice]) -> None:
        """Replace the whole collection with ``entries``."""

        self._entries = list(entries)

    def files_to_upload(self) -> List[FileStorage]:
        """Return the file handles of entries that carry one, in order."""

        return [entry.file for entry in self._entries if entry.file is not None]

    def metadata(self) -> List[InvoiceMetadata]:
        return [entry.to_metadata() for entry in self._entries]

    def clear(self) -> None:
        self._entries = []
