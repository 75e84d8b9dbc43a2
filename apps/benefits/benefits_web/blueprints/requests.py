"""HTTP routes for submitting and reviewing benefit requests."""

from __future__ import annotations

from flask import Blueprint, Response, abort, current_app, jsonify, request, send_file
from flask_login import current_user, login_required
from sqlalchemy.exc import NoResultFound

from packages.benefits_common import BenefitRequest, RequestStatus

from .. import get_repository, get_users_repository
from ..accounts import ROLE_MANAGER
from ..errors import IdentityMissingError, InvalidTransitionError
from ..forms import parse_request_form
from ..notifications import notify_request_decided, notify_request_submitted
from ..policies import roles_required
from ..services import (
    approve_request,
    can_view,
    event_to_dict,
    polos_for_select,
    reject_request,
    relationships_for_select,
    request_to_dict,
    suggest_amount,
)
from ..storage import StorageError
from ..workflow import (
    CollectingNotifier,
    InvoiceLinker,
    RequestSubmissionWorkflow,
    SubmissionState,
)

requests_bp = Blueprint("requests", __name__)


def _load_request(request_id: int) -> BenefitRequest:
    try:
        return get_repository().get_request(request_id)
    except NoResultFound:
        abort(404)


def _decision_note() -> str:
    data = request.get_json(silent=True) or request.form
    return (data.get("note") or "").strip()


@requests_bp.get("/options")
def form_options() -> Response:
    """Return the choices offered on the request form."""

    return jsonify(
        {
            "polos": [{"code": o.code, "label": o.label} for o in polos_for_select()],
            "relationships": [
                {"code": o.code, "label": o.label} for o in relationships_for_select()
            ],
        }
    )


@requests_bp.get("/calculator")
def calculator() -> Response:
    """Return the suggested reimbursement for ``?salary=``."""

    return jsonify(suggest_amount(request.args.get("salary")))


@requests_bp.get("/requests")
@login_required
def list_requests() -> Response:
    """List the caller's requests, or every request for managers."""

    status = None
    raw_status = request.args.get("status")
    if raw_status:
        try:
            status = RequestStatus(raw_status)
        except ValueError:
            abort(400, description=f"Unknown status: {raw_status}")
    requester_id = None if current_user.is_manager else current_user.id
    items = get_repository().list_requests(requester_id=requester_id, status=status)
    return jsonify({"requests": [request_to_dict(item) for item in items]})


@requests_bp.post("/requests")
def submit_request():
    """Run the submission workflow for a multipart request form."""

    app_config = current_app.config["APP_CONFIG"]
    repo = get_repository()
    users_repo = get_users_repository()
    identity = current_user._get_current_object() if current_user.is_authenticated else None

    def _on_submitted(saved: BenefitRequest) -> None:
        notify_request_submitted(
            app_config.mail, saved, identity, users_repo.manager_emails()
        )

    notifier = CollectingNotifier()
    workflow = RequestSubmissionWorkflow(
        identity=identity,
        repository=repo,
        linker=InvoiceLinker(current_app.config["UPLOAD_GATEWAY"], repo),
        notifier=notifier,
        on_submitted=_on_submitted,
    )
    draft, dependents, invoices = parse_request_form(request.form, request.files)
    result = workflow.submit(
        draft,
        dependents,
        invoices,
        idempotency_key=request.headers.get("Idempotency-Key") or None,
    )

    body = {
        "status": result.state.value,
        "message": result.message,
        "notifications": [
            {"level": n.level, "title": n.title, "description": n.description}
            for n in notifier.messages
        ],
    }
    if result.state == SubmissionState.DONE:
        body["request"] = request_to_dict(result.request)
        return jsonify(body), 201
    if result.state == SubmissionState.IDLE:
        body["errors"] = result.errors
        return jsonify(body), 400
    if isinstance(result.error, IdentityMissingError):
        return jsonify(body), 401
    current_app.logger.error("Request submission failed: %s", result.error)
    return jsonify(body), 502


@requests_bp.get("/requests/<int:request_id>.json")
@login_required
def view_request(request_id: int) -> Response:
    """Return a single request with its attachments."""

    item = _load_request(request_id)
    if not can_view(current_user, item):
        abort(404)
    return jsonify(request_to_dict(item))


@requests_bp.post("/requests/<int:request_id>/approve")
@roles_required(ROLE_MANAGER)
def approve(request_id: int):
    return _decide(request_id, approve_request)


@requests_bp.post("/requests/<int:request_id>/reject")
@roles_required(ROLE_MANAGER)
def reject(request_id: int):
    return _decide(request_id, reject_request)


def _decide(request_id: int, action):
    repo = get_repository()
    try:
        decided = action(repo, request_id, current_user, _decision_note())
    except NoResultFound:
        abort(404)
    except InvalidTransitionError as exc:
        return jsonify({"error": str(exc)}), 409
    current_app.logger.info(
        "Request %s %s by %s", request_id, decided.status.value, current_user.id
    )
    requester = get_users_repository().get_user(decided.requester_id)
    notify_request_decided(current_app.config["APP_CONFIG"].mail, decided, requester)
    return jsonify(request_to_dict(decided))


@requests_bp.get("/requests/<int:request_id>/audit")
@roles_required(ROLE_MANAGER)
def audit_trail(request_id: int) -> Response:
    """Return the compliance audit trail of a request."""

    _load_request(request_id)
    events = get_repository().list_events(request_id)
    return jsonify({"events": [event_to_dict(event) for event in events]})


@requests_bp.get("/attachments/<path:key>")
@login_required
def download_attachment(key: str) -> Response:
    """Serve a stored invoice to its requester or to a manager."""

    owner, _, _ = key.partition("/")
    if not owner.isdigit():
        abort(404)
    item = _load_request(int(owner))
    if not can_view(current_user, item):
        abort(404)
    attachment = next((a for a in item.attachments if a.storage_path == key), None)
    if attachment is None:
        abort(404)
    try:
        handle = current_app.config["STORAGE"].open(key)
    except StorageError:
        abort(404)
    return send_file(handle, as_attachment=True, download_name=attachment.file_name)
