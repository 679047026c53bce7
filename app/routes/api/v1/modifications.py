from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.decorators import role_required
from app.services import BookingService, ModificationService
from app.utils import parse_datetime, to_id

api_modification_bp = Blueprint("api_modification", __name__)


def _booking_from(payload):
    return BookingService.get_for_user(to_id(payload.get("booking_id"), "booking_id"), current_user)


@api_modification_bp.post("/reschedule")
@login_required
@role_required("student", "guardian")
def request_reschedule():
    payload = request.get_json(silent=True) or {}
    modification = ModificationService.create_reschedule_request(
        _booking_from(payload),
        current_user,
        parse_datetime(payload.get("new_start_time"), "new start time"),
        payload.get("reason"),
    )
    return jsonify(modification.to_dict()), 201


@api_modification_bp.post("/rebook")
@login_required
@role_required("student", "guardian")
def request_rebook():
    payload = request.get_json(silent=True) or {}
    modification = ModificationService.create_rebook_request(
        _booking_from(payload),
        current_user,
        to_id(payload.get("new_teacher_id"), "new_teacher_id"),
        to_id(payload.get("new_subject_id"), "new_subject_id", required=False),
        parse_datetime(payload.get("new_start_time"), "new start time"),
        payload.get("reason"),
    )
    return jsonify(modification.to_dict()), 201


@api_modification_bp.get("/me")
@login_required
def my_modifications():
    rows = ModificationService.list_for_user(current_user, status=request.args.get("status"))
    return jsonify([row.to_dict() for row in rows])


@api_modification_bp.post("/<int:modification_id>/approve")
@login_required
@role_required("teacher")
def approve_modification(modification_id):
    payload = request.get_json(silent=True) or {}
    modification = ModificationService.get(modification_id)
    return jsonify(ModificationService.approve_modification(modification, current_user, payload.get("notes")).to_dict())


@api_modification_bp.post("/<int:modification_id>/reject")
@login_required
@role_required("teacher")
def reject_modification(modification_id):
    payload = request.get_json(silent=True) or {}
    modification = ModificationService.get(modification_id)
    return jsonify(ModificationService.reject_modification(modification, current_user, payload.get("notes")).to_dict())


@api_modification_bp.post("/<int:modification_id>/cancel")
@login_required
@role_required("student", "guardian")
def cancel_modification(modification_id):
    modification = ModificationService.get(modification_id)
    return jsonify(ModificationService.cancel_modification(modification, current_user).to_dict())
