from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.decorators import role_required
from app.models import BookingHistory
from app.routes.api.v1.pagination import page_args, paginated
from app.services import BookingService, ReviewService
from app.utils import parse_datetime, to_id

api_booking_bp = Blueprint("api_booking", __name__)


@api_booking_bp.post("")
@login_required
@role_required("student", "guardian", "admin")
def create_booking():
    payload = request.get_json(silent=True) or {}
    booking = BookingService.create_booking(
        current_user,
        teacher_id=to_id(payload.get("teacher_id"), "teacher_id"),
        subject_id=to_id(payload.get("subject_id"), "subject_id", required=False),
        start_time=parse_datetime(payload.get("start_time"), "start time"),
        duration_minutes=payload.get("duration_minutes"),
        notes=payload.get("notes"),
        student_id=to_id(payload.get("student_id"), "student_id", required=False),
    )
    return jsonify(booking.to_dict()), 201


@api_booking_bp.get("/me")
@login_required
def my_bookings():
    page, per_page = page_args()
    result = BookingService.list_for_user(current_user, status=request.args.get("status"), page=page, per_page=per_page)
    return jsonify(paginated(result, lambda b: b.to_dict()))


@api_booking_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id):
    booking = BookingService.get_for_user(booking_id, current_user)
    data = booking.to_dict()
    data["history"] = [
        {"action": row.action, "performed_by_id": row.performed_by_id, "notes": row.notes}
        for row in booking.history.order_by(BookingHistory.id).all()
    ]
    return jsonify(data)


@api_booking_bp.post("/<int:booking_id>/approve")
@login_required
@role_required("teacher", "admin")
def approve_booking(booking_id):
    booking = BookingService.get_for_user(booking_id, current_user)
    return jsonify(BookingService.approve_booking(booking, current_user).to_dict())


@api_booking_bp.post("/<int:booking_id>/reject")
@login_required
@role_required("teacher", "admin")
def reject_booking(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = BookingService.get_for_user(booking_id, current_user)
    return jsonify(BookingService.reject_booking(booking, current_user, payload.get("reason")).to_dict())


@api_booking_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = BookingService.get_for_user(booking_id, current_user)
    return jsonify(BookingService.cancel_booking(booking, current_user, payload.get("reason")).to_dict())


@api_booking_bp.post("/<int:booking_id>/review")
@login_required
@role_required("student")
def review_booking(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = BookingService.get_for_user(booking_id, current_user)
    review = ReviewService.upsert_review(booking, current_user, payload.get("rating"), payload.get("comment"))
    return jsonify({"id": review.id, "rating": review.rating, "comment": review.comment}), 201
