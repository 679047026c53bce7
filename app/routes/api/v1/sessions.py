from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.decorators import role_required
from app.routes.api.v1.pagination import page_args, paginated
from app.services import SessionService

api_session_bp = Blueprint("api_session", __name__)


@api_session_bp.get("/me")
@login_required
def my_sessions():
    page, per_page = page_args()
    result = SessionService.list_for_user(current_user, status=request.args.get("status"), page=page, per_page=per_page)
    return jsonify(paginated(result, lambda s: s.to_dict()))


@api_session_bp.post("/<int:session_id>/join")
@login_required
def join_session(session_id):
    session = SessionService.get_for_user(session_id, current_user)
    return jsonify(SessionService.join_session(session, current_user).to_dict())


@api_session_bp.post("/<int:session_id>/leave")
@login_required
def leave_session(session_id):
    session = SessionService.get_for_user(session_id, current_user)
    return jsonify(SessionService.leave_session(session, current_user).to_dict())


@api_session_bp.post("/<int:session_id>/complete")
@login_required
@role_required("teacher", "admin")
def complete_session(session_id):
    payload = request.get_json(silent=True) or {}
    session = SessionService.get_for_user(session_id, current_user)
    return jsonify(SessionService.complete_session(session, current_user, payload.get("notes")).to_dict())


@api_session_bp.post("/<int:session_id>/rate")
@login_required
def rate_session(session_id):
    payload = request.get_json(silent=True) or {}
    session = SessionService.get_for_user(session_id, current_user)
    return jsonify(SessionService.rate_session(session, current_user, payload.get("rating")).to_dict())
