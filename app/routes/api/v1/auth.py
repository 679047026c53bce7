from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from app.decorators import role_required
from app.errors import AppError
from app.extensions import limiter
from app.services import AuthService, NotificationService, WalletService

api_auth_bp = Blueprint("api_auth", __name__)


def _login_limit():
    return current_app.config["LOGIN_RATE_LIMIT"]


@api_auth_bp.post("/register")
@limiter.limit(_login_limit)
def api_register():
    payload = request.get_json(silent=True) or {}
    if payload.get("guardian_id") is not None:
        raise AppError("Children are added from the guardian's account.", 400)
    user = AuthService.register_user(
        full_name=payload.get("full_name", ""),
        email=payload.get("email", ""),
        password=payload.get("password", ""),
        role=payload.get("role", ""),
        phone=payload.get("phone"),
    )
    login_user(user)
    return jsonify(user.to_dict()), 201


@api_auth_bp.post("/login")
@limiter.limit(_login_limit)
def api_login():
    payload = request.get_json(silent=True) or {}
    user = AuthService.authenticate_user(payload.get("email", ""), payload.get("password", ""))
    login_user(user, remember=bool(payload.get("remember")))
    return jsonify(user.to_dict())


@api_auth_bp.post("/logout")
@login_required
def api_logout():
    logout_user()
    return jsonify({"ok": True})


@api_auth_bp.get("/me")
@login_required
def api_me():
    data = current_user.to_dict()
    data["unread_notifications"] = NotificationService.unread_count(current_user.id)
    if current_user.role != "admin":
        data["wallet"] = WalletService.wallet_for(current_user).to_dict()
    if current_user.role == "guardian":
        data["children"] = [child.to_dict() for child in current_user.children.all()]
    return jsonify(data)


@api_auth_bp.post("/children")
@role_required("guardian")
def api_add_child():
    payload = request.get_json(silent=True) or {}
    child = AuthService.register_child(
        current_user,
        full_name=payload.get("full_name", ""),
        email=payload.get("email", ""),
        password=payload.get("password", ""),
        phone=payload.get("phone"),
    )
    return jsonify(child.to_dict()), 201
