"""Database access layer for the Benefits web app."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from packages.benefits_common import (
    Attachment,
    AuditEvent,
    BenefitRequest,
    Dependent,
    InvoiceMetadata,
    NewRequest,
    RequestStatus,
)

from .accounts import ROLE_EMPLOYEE, ROLE_MANAGER, ROLES, UserAccount
from .database import (
    audit_events,
    benefit_requests,
    request_attachments,
    session_scope,
    users,
)
from .errors import CreationError, InvalidTransitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsersRepository:
    """Stores requester and manager accounts."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def create_user(
        self, email: str, name: str, password: str, role: str = ROLE_EMPLOYEE
    ) -> UserAccount:
        """Persist a new account with a hashed password."""

        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        payload = {
            "email": email.strip().lower(),
            "name": name.strip(),
            "password_hash": generate_password_hash(password),
            "role": role,
        }
        with session_scope(self._engine) as session:
            user_id = session.execute(
                insert(users).values(**payload).returning(users.c.id)
            ).scalar_one()
        return UserAccount(
            id=user_id,
            email=payload["email"],
            name=payload["name"],
            role=role,
            password_hash=payload["password_hash"],
        )

    def get_user(self, user_id: int) -> Optional[UserAccount]:
        with session_scope(self._engine) as session:
            row = session.execute(
                select(users).where(users.c.id == user_id)
            ).one_or_none()
        return self._row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> Optional[UserAccount]:
        with session_scope(self._engine) as session:
            row = session.execute(
                select(users).where(users.c.email == (email or "").strip().lower())
            ).one_or_none()
        return self._row_to_user(row) if row is not None else None

    def authenticate(self, email: str, password: str) -> Optional[UserAccount]:
        """Return the account when ``password`` matches, otherwise ``None``."""

        user = self.get_by_email(email)
        if user is None or not user.password_hash:
            return None
        if not check_password_hash(user.password_hash, password or ""):
            return None
        return user

    def manager_emails(self) -> List[str]:
        with session_scope(self._engine) as session:
            rows = session.execute(
                select(users.c.email)
                .where(users.c.role == ROLE_MANAGER)
                .order_by(users.c.id)
            ).all()
        return [row.email for row in rows]

    @staticmethod
    def _row_to_user(row) -> UserAccount:
        values = row._mapping
        return UserAccount(
            id=values["id"],
            email=values["email"],
            name=values["name"],
            role=values["role"],
            password_hash=values["password_hash"],
        )


class RequestsRepository:
    """Creates, links, decides and audits benefit requests."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def create_request(
        self,
        payload: NewRequest,
        requester_id: int,
        *,
        idempotency_key: Optional[str] = None,
    ) -> BenefitRequest:
        """Persist a new request in the ``created`` state.

        When ``idempotency_key`` matches an earlier request from the same
        requester that request is returned instead of inserting a duplicate.

        Raises:
            TypeError: If ``payload`` is not a :class:`NewRequest`.
            CreationError: If the database rejects the write.
        """

        if not isinstance(payload, NewRequest):
            raise TypeError(f"unexpected request payload: {payload!r}")
        if idempotency_key:
            existing = self.find_by_idempotency_key(requester_id, idempotency_key)
            if existing is not None:
                return existing

        try:
            values = {
                "requester_id": requester_id,
                "type": payload.type,
                "amount_cents": int((payload.amount * 100).to_integral_value()),
                "polo": payload.polo,
                "cpf": payload.cpf,
                "dependents_json": json.dumps([d.to_dict() for d in payload.dependents]),
                "invoices_json": json.dumps([i.to_dict() for i in payload.invoices]),
                "status": RequestStatus.CREATED.value,
                "idempotency_key": idempotency_key or None,
            }
            with session_scope(self._engine) as session:
                request_id = session.execute(
                    insert(benefit_requests)
                    .values(**values)
                    .returning(benefit_requests.c.id)
                ).scalar_one()
                self._insert_event(
                    session,
                    AuditEvent(
                        event_type="CREATED",
                        request_id=request_id,
                        actor_id=requester_id,
                        payload={
                            "amount": str(payload.amount),
                            "polo": payload.polo,
                            "dependents": len(payload.dependents),
                            "invoices": len(payload.invoices),
                        },
                    ),
                )
        except IntegrityError as exc:
            if idempotency_key:
                existing = self.find_by_idempotency_key(requester_id, idempotency_key)
                if existing is not None:
                    return existing
            raise CreationError(f"Could not create request: {exc}") from exc
        except SQLAlchemyError as exc:
            raise CreationError(f"Could not create request: {exc}") from exc
        except (ArithmeticError, ValueError) as exc:
            # Amounts the cents column cannot hold (SQLite raises OverflowError).
            raise CreationError(
                f"Could not store amount {payload.amount}: {exc}"
            ) from exc
        return self.get_request(request_id)

    def find_by_idempotency_key(
        self, requester_id: int, idempotency_key: str
    ) -> Optional[BenefitRequest]:
        with session_scope(self._engine) as session:
            request_id = session.execute(
                select(benefit_requests.c.id).where(
                    benefit_requests.c.requester_id == requester_id,
                    benefit_requests.c.idempotency_key == idempotency_key,
                )
            ).scalar_one_or_none()
        return self.get_request(request_id) if request_id is not None else None

    def get_request(self, request_id: int) -> BenefitRequest:
        """Fetch a single request including its attachments."""

        with session_scope(self._engine) as session:
            row = session.execute(
                select(benefit_requests).where(benefit_requests.c.id == request_id)
            ).one_or_none()
            if row is None:
                raise NoResultFound(f"Request {request_id} not found")
            attachment_rows = session.execute(
                select(request_attachments)
                .where(request_attachments.c.request_id == request_id)
                .order_by(request_attachments.c.id)
            ).all()
        request = self._row_to_request(row)
        request.attachments = [self._row_to_attachment(r) for r in attachment_rows]
        return request

    def list_requests(
        self,
        *,
        requester_id: Optional[int] = None,
        status: Optional[RequestStatus] = None,
    ) -> List[BenefitRequest]:
        """Return requests newest first, optionally filtered."""

        query = select(benefit_requests).order_by(
            benefit_requests.c.created_at.desc(), benefit_requests.c.id.desc()
        )
        if requester_id is not None:
            query = query.where(benefit_requests.c.requester_id == requester_id)
        if status is not None:
            query = query.where(benefit_requests.c.status == status.value)
        with session_scope(self._engine) as session:
            rows = session.execute(query).all()
        return [self._row_to_request(row) for row in rows]

    def attach_invoices(
        self, request_id: int, attachments: List[Attachment], *, actor_id: Optional[int] = None
    ) -> List[Attachment]:
        """Link uploaded invoice files to ``request_id``."""

        saved: List[Attachment] = []
        with session_scope(self._engine) as session:
            for attachment in attachments:
                attachment_id = session.execute(
                    insert(request_attachments)
                    .values(
                        request_id=request_id,
                        storage_path=attachment.storage_path,
                        file_name=attachment.file_name,
                        size_bytes=attachment.size_bytes,
                    )
                    .returning(request_attachments.c.id)
                ).scalar_one()
                saved.append(replace(attachment, id=attachment_id, request_id=request_id))
            self._insert_event(
                session,
                AuditEvent(
                    event_type="INVOICES_ATTACHED",
                    request_id=request_id,
                    actor_id=actor_id,
                    payload={"paths": [a.storage_path for a in attachments]},
                ),
            )
        return saved

    def transition(
        self,
        request_id: int,
        *,
        expected: RequestStatus,
        target: RequestStatus,
        actor_id: Optional[int],
        note: str = "",
        event_type: Optional[str] = None,
    ) -> BenefitRequest:
        """Move a request from ``expected`` to ``target`` status.

        Decisions (``approved``/``rejected``) also record who decided and when.

        Raises:
            NoResultFound: If the request does not exist.
            InvalidTransitionError: If the request is not in ``expected``.
        """

        values: Dict[str, Any] = {"status": target.value}
        if target in (RequestStatus.APPROVED, RequestStatus.REJECTED):
            values.update(decided_by=actor_id, decided_at=_utcnow(), decision_note=note)
        with session_scope(self._engine) as session:
            current = session.execute(
                select(benefit_requests.c.status).where(
                    benefit_requests.c.id == request_id
                )
            ).scalar_one_or_none()
            if current is None:
                raise NoResultFound(f"Request {request_id} not found")
            result = session.execute(
                update(benefit_requests)
                .where(
                    benefit_requests.c.id == request_id,
                    benefit_requests.c.status == expected.value,
                )
                .values(**values)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError(
                    f"Request {request_id} is {current}, expected {expected.value}"
                )
            self._insert_event(
                session,
                AuditEvent(
                    event_type=event_type or target.value.upper(),
                    request_id=request_id,
                    actor_id=actor_id,
                    payload={"from": expected.value, "to": target.value, "note": note},
                ),
            )
        return self.get_request(request_id)

    def record_event(self, event: AuditEvent) -> None:
        with session_scope(self._engine) as session:
            self._insert_event(session, event)

    def list_events(self, request_id: int) -> List[AuditEvent]:
        """Return the audit trail of ``request_id`` oldest first."""

        with session_scope(self._engine) as session:
            rows = session.execute(
                select(audit_events)
                .where(audit_events.c.request_id == request_id)
                .order_by(audit_events.c.id)
            ).all()
        return [self._row_to_event(row) for row in rows]

    @staticmethod
    def _insert_event(session: Session, event: AuditEvent) -> None:
        session.execute(
            insert(audit_events).values(
                request_id=event.request_id,
                actor_id=event.actor_id,
                event_type=event.event_type,
                payload_json=json.dumps(event.payload),
            )
        )

    @staticmethod
    def _row_to_request(row) -> BenefitRequest:
        """Convert a SQLAlchemy row to a :class:`BenefitRequest`."""

        values = row._mapping
        return BenefitRequest(
            id=values["id"],
            requester_id=values["requester_id"],
            type=values["type"],
            amount=Decimal(values["amount_cents"]) / Decimal(100),
            polo=values["polo"],
            cpf=values["cpf"],
            status=RequestStatus(values["status"]),
            dependents=[Dependent(**d) for d in json.loads(values["dependents_json"])],
            invoices=[
                InvoiceMetadata.from_dict(i) for i in json.loads(values["invoices_json"])
            ],
            idempotency_key=values["idempotency_key"],
            created_at=values["created_at"],
            decided_at=values["decided_at"],
            decided_by=values["decided_by"],
            decision_note=values["decision_note"] or "",
        )

    @staticmethod
    def _row_to_attachment(row) -> Attachment:
        values = row._mapping
        return Attachment(
            id=values["id"],
            request_id=values["request_id"],
            storage_path=values["storage_path"],
            file_name=values["file_name"],
            size_bytes=values["size_bytes"],
            created_at=values["created_at"],
        )

    @staticmethod
    def _row_to_event(row) -> AuditEvent:
        values = row._mapping
        return AuditEvent(
            id=values["id"],
            request_id=values["request_id"],
            actor_id=values["actor_id"],
            event_type=values["event_type"],
            payload=json.loads(values["payload_json"] or "{}"),
            created_at=values["created_at"],
        )
