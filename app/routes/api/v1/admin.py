from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.decorators import admin_required
from app.errors import AppError
from app.extensions import db
from app.models import Booking, User
from app.routes.api.v1.pagination import page_args, paginated
from app.services import (
    BookingService,
    NotificationService,
    PayoutService,
    PlatformService,
    VerificationService,
    WalletService,
)
from app.utils import parse_datetime, to_id

api_admin_bp = Blueprint("api_admin", __name__)


def _booking_or_404(booking_id):
    booking = db.session.get(Booking, booking_id)
    if not booking:
        raise AppError("Booking not found.", 404)
    return booking


@api_admin_bp.get("/bookings")
@login_required
@admin_required
def list_bookings():
    page, per_page = page_args()
    args = request.args
    result = BookingService.admin_list(
        status=args.get("status"),
        teacher_id=args.get("teacher_id", type=int),
        student_id=args.get("student_id", type=int),
        date_from=parse_datetime(args["date_from"], "date_from") if args.get("date_from") else None,
        date_to=parse_datetime(args["date_to"], "date_to") if args.get("date_to") else None,
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated(result, lambda b: b.to_dict()))


@api_admin_bp.get("/bookings/stats")
@login_required
@admin_required
def booking_stats():
    return jsonify(BookingService.booking_stats())


@api_admin_bp.post("/bookings/<int:booking_id>/status")
@login_required
@admin_required
def update_booking_status(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = BookingService.admin_update_status(
        _booking_or_404(booking_id), payload.get("status"), current_user, payload.get("notes")
    )
    return jsonify(booking.to_dict())


@api_admin_bp.post("/bookings/<int:booking_id>/reassign")
@login_required
@admin_required
def reassign_booking(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = BookingService.reassign_booking(
        _booking_or_404(booking_id),
        to_id(payload.get("teacher_id"), "teacher_id"),
        current_user,
        payload.get("note"),
        notify=payload.get("notify", True) is not False,
    )
    return jsonify(booking.to_dict())


@api_admin_bp.post("/bookings/<int:booking_id>/reschedule")
@login_required
@admin_required
def reschedule_booking(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = BookingService.reschedule_booking(
        _booking_or_404(booking_id),
        parse_datetime(payload.get("start_time"), "start time"),
        current_user,
        payload.get("reason"),
        notify=payload.get("notify", True) is not False,
    )
    return jsonify(booking.to_dict())


@api_admin_bp.get("/payouts")
@login_required
@admin_required
def list_payouts():
    page, per_page = page_args()
    result = PayoutService.admin_list(status=request.args.get("status"), page=page, per_page=per_page)
    return jsonify(paginated(result, lambda p: p.to_dict()))


@api_admin_bp.post("/payouts/<int:payout_id>/approve")
@login_required
@admin_required
def approve_payout(payout_id):
    return jsonify(PayoutService.approve(PayoutService.get(payout_id), current_user).to_dict())


@api_admin_bp.post("/payouts/<int:payout_id>/reject")
@login_required
@admin_required
def reject_payout(payout_id):
    payload = request.get_json(silent=True) or {}
    return jsonify(PayoutService.reject(PayoutService.get(payout_id), current_user, payload.get("reason")).to_dict())


@api_admin_bp.post("/payouts/<int:payout_id>/mark-paid")
@login_required
@admin_required
def mark_payout_paid(payout_id):
    return jsonify(PayoutService.mark_paid(PayoutService.get(payout_id), current_user).to_dict())


@api_admin_bp.get("/settings")
@login_required
@admin_required
def get_settings():
    return jsonify(PlatformService.all_settings())


@api_admin_bp.put("/settings")
@login_required
@admin_required
def update_settings():
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict) or not payload:
        raise AppError("Provide at least one setting.", 400)
    for key, value in payload.items():
        PlatformService.set_setting(key, value, updated_by_id=current_user.id)
    return jsonify(PlatformService.all_settings())


@api_admin_bp.get("/teachers/documents")
@login_required
@admin_required
def list_documents():
    rows = VerificationService.list_documents(
        teacher_id=request.args.get("teacher_id", type=int), status=request.args.get("status")
    )
    return jsonify(
        [
            {
                "id": row.id,
                "teacher_id": row.teacher_id,
                "document_type": row.document_type,
                "file_path": row.file_path,
                "status": row.status,
                "rejection_reason": row.rejection_reason,
            }
            for row in rows
        ]
    )


@api_admin_bp.post("/teachers/documents/<int:document_id>/verify")
@login_required
@admin_required
def verify_document(document_id):
    document = VerificationService.verify_document(VerificationService.get_document(document_id), current_user)
    return jsonify({"id": document.id, "status": document.status})


@api_admin_bp.post("/teachers/documents/<int:document_id>/reject")
@login_required
@admin_required
def reject_document(document_id):
    payload = request.get_json(silent=True) or {}
    document = VerificationService.reject_document(
        VerificationService.get_document(document_id), current_user, payload.get("reason")
    )
    return jsonify({"id": document.id, "status": document.status, "rejection_reason": document.rejection_reason})


@api_admin_bp.post("/teachers/<int:teacher_id>/approve")
@login_required
@admin_required
def approve_teacher(teacher_id):
    payload = request.get_json(silent=True) or {}
    profile = VerificationService.approve_teacher(teacher_id, current_user, payload.get("notes"))
    return jsonify({"teacher_id": profile.user_id, "verification_status": profile.verification_status})


@api_admin_bp.post("/teachers/<int:teacher_id>/reject")
@login_required
@admin_required
def reject_teacher(teacher_id):
    payload = request.get_json(silent=True) or {}
    profile = VerificationService.reject_teacher(teacher_id, current_user, payload.get("reason"))
    return jsonify({"teacher_id": profile.user_id, "verification_status": profile.verification_status})


@api_admin_bp.post("/notifications/broadcast")
@login_required
@admin_required
def broadcast():
    payload = request.get_json(silent=True) or {}
    role = payload.get("role") or "all"
    if role not in {"all", "student", "guardian", "teacher", "admin"}:
        raise AppError("Invalid role.", 400)
    count = NotificationService.broadcast(current_user, role, payload.get("title"), payload.get("message"))
    return jsonify({"recipients": count})


@api_admin_bp.post("/wallets/<int:user_id>/adjust")
@login_required
@admin_required
def adjust_wallet(user_id):
    payload = request.get_json(silent=True) or {}
    user = db.session.get(User, user_id)
    if not user:
        raise AppError("User not found.", 404)
    tx = WalletService.admin_adjustment(user, payload.get("amount"), payload.get("reason"), current_user)
    return jsonify({"transaction": tx.to_dict(), "wallet": WalletService.wallet_for(user).to_dict()})
