from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.decorators import role_required
from app.routes.api.v1.pagination import page_args, paginated
from app.services import PayoutService
from app.utils import to_id

api_payout_bp = Blueprint("api_payout", __name__)


@api_payout_bp.get("/methods")
@login_required
@role_required("teacher")
def list_methods():
    return jsonify([row.to_dict() for row in PayoutService.list_payment_methods(current_user)])


@api_payout_bp.post("/methods")
@login_required
@role_required("teacher")
def add_method():
    payload = request.get_json(silent=True) or {}
    method = PayoutService.add_payment_method(
        current_user, payload.get("type"), payload.get("details"), bool(payload.get("is_default"))
    )
    return jsonify(method.to_dict()), 201


@api_payout_bp.post("/calculate")
@login_required
@role_required("teacher")
def calculate():
    payload = request.get_json(silent=True) or {}
    return jsonify(
        PayoutService.calculator(payload.get("method"), payload.get("amount"), payload.get("currency") or "NGN")
    )


@api_payout_bp.post("")
@login_required
@role_required("teacher")
def request_payout():
    payload = request.get_json(silent=True) or {}
    payout = PayoutService.create_request(
        current_user,
        payload.get("amount"),
        method=payload.get("method"),
        currency=payload.get("currency") or "NGN",
        payment_method_id=to_id(payload.get("payment_method_id"), "payment_method_id", required=False),
        notes=payload.get("notes"),
        details=payload.get("details"),
    )
    return jsonify(payout.to_dict()), 201


@api_payout_bp.get("/me")
@login_required
@role_required("teacher")
def my_payouts():
    page, per_page = page_args()
    return jsonify(paginated(PayoutService.list_for_teacher(current_user.id, page, per_page), lambda p: p.to_dict()))


@api_payout_bp.post("/<int:payout_id>/cancel")
@login_required
@role_required("teacher")
def cancel_payout(payout_id):
    payout = PayoutService.get(payout_id)
    return jsonify(PayoutService.cancel(payout, current_user).to_dict())
