from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.decorators import role_required
from app.routes.api.v1.pagination import page_args, paginated
from app.services import WalletService

api_wallet_bp = Blueprint("api_wallet", __name__)


@api_wallet_bp.get("/me")
@login_required
@role_required("student", "guardian", "teacher")
def my_wallet():
    return jsonify(WalletService.wallet_for(current_user).to_dict())


@api_wallet_bp.post("/fund")
@login_required
@role_required("student", "guardian")
def fund_wallet():
    payload = request.get_json(silent=True) or {}
    tx = WalletService.fund_wallet(current_user, payload.get("amount"), payload.get("reference"))
    return jsonify({"transaction": tx.to_dict(), "wallet": WalletService.wallet_for(current_user).to_dict()}), 201


@api_wallet_bp.get("/transactions")
@login_required
def my_transactions():
    page, per_page = page_args()
    result = WalletService.history(
        current_user.id, page=page, per_page=per_page, transaction_type=request.args.get("type")
    )
    return jsonify(paginated(result, lambda tx: tx.to_dict()))
