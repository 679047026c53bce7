from datetime import date

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.decorators import role_required
from app.errors import AppError
from app.routes.api.v1.pagination import page_args, paginated
from app.services import TeacherService, VerificationService

api_teacher_bp = Blueprint("api_teacher", __name__)


@api_teacher_bp.get("")
def list_teachers():
    page, per_page = page_args(default_per_page=12)
    result = TeacherService.list_teachers(
        page=page,
        per_page=per_page,
        subject=request.args.get("subject"),
        verified_only=request.args.get("verified_only", "true").lower() != "false",
        max_rate_ngn=request.args.get("max_rate_ngn"),
    )
    return jsonify(paginated(result, TeacherService.profile_dict))


@api_teacher_bp.get("/<int:teacher_id>")
def get_teacher(teacher_id):
    return jsonify(TeacherService.profile_dict(TeacherService.get_profile(teacher_id)))


@api_teacher_bp.get("/<int:teacher_id>/slots")
def teacher_slots(teacher_id):
    raw = request.args.get("date", "")
    try:
        day = date.fromisoformat(raw)
    except ValueError as exc:
        raise AppError("Query parameter 'date' must be YYYY-MM-DD.", 400) from exc
    slots = TeacherService.available_slots(teacher_id, day)
    return jsonify(
        {
            "date": day.isoformat(),
            "slots": [{"start": start.isoformat(), "end": end.isoformat()} for start, end in slots],
        }
    )


@api_teacher_bp.patch("/me")
@login_required
@role_required("teacher")
def update_me():
    profile = TeacherService.update_profile(current_user, request.get_json(silent=True) or {})
    return jsonify(TeacherService.profile_dict(profile))


@api_teacher_bp.post("/me/subjects")
@login_required
@role_required("teacher")
def add_subject():
    payload = request.get_json(silent=True) or {}
    subject = TeacherService.add_subject(current_user, payload.get("name"))
    return jsonify({"id": subject.id, "name": subject.name}), 201


@api_teacher_bp.put("/me/availability")
@login_required
@role_required("teacher")
def set_availability():
    payload = request.get_json(silent=True) or {}
    rows = TeacherService.set_availability(current_user, payload.get("windows"))
    return jsonify(
        [
            {
                "day_of_week": row.day_of_week,
                "start_time": row.start_time.strftime("%H:%M"),
                "end_time": row.end_time.strftime("%H:%M"),
                "is_active": row.is_active,
            }
            for row in rows
        ]
    )


@api_teacher_bp.post("/me/documents")
@login_required
@role_required("teacher")
def upload_document():
    document = VerificationService.upload_document(
        current_user,
        request.form.get("document_type", ""),
        request.files.get("file"),
    )
    return jsonify({"id": document.id, "document_type": document.document_type, "status": document.status}), 201
