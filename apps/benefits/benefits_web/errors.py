"""Exceptions raised while submitting and deciding benefit requests."""

from __future__ import annotations

from typing import List


class IdentityMissingError(RuntimeError):
    """Raised when a submission has no requester identity."""


class CreationError(RuntimeError):
    """Raised when the request record cannot be persisted."""


class InvalidTransitionError(RuntimeError):
    """Raised when a request is not in a state that allows the action."""


class AttachmentLinkError(RuntimeError):
    """Raised when stored invoice files cannot be linked to their request.

    Attributes:
        cause: Message describing the underlying database failure.
        paths: Storage keys that were written but are not linked.
    """

    def __init__(self, cause: str, paths: List[str]):
        super().__init__(f"Could not link invoices: {cause}")
        self.cause = cause
        self.paths = list(paths)
