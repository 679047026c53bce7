import re

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.errors import AppError
from app.extensions import bcrypt, db
from app.models import StudentWallet, TeacherProfile, TeacherWallet, User
from app.utils import utcnow

SELF_SERVICE_ROLES = {"student", "guardian", "teacher"}


class AuthService:
    @staticmethod
    def _normalize_phone(phone):
        if not phone:
            return None
        digits = "".join(ch for ch in phone if ch.isdigit() or ch == "+")
        if not re.fullmatch(r"\+?\d{7,15}", digits):
            raise AppError("Phone number must contain 7 to 15 digits.", 400)
        return digits

    @staticmethod
    def _provision(user):
        if user.role == "teacher":
            db.session.add(TeacherProfile(user_id=user.id, verification_status="pending"))
            db.session.add(TeacherWallet(user_id=user.id, balance=0, total_earned=0, total_withdrawn=0, pending_payouts=0))
        elif user.role in {"student", "guardian"}:
            db.session.add(StudentWallet(user_id=user.id, balance=0, total_spent=0, total_refunded=0))

    @staticmethod
    def register_user(full_name, email, password, role, phone=None, guardian_id=None):
        if role not in SELF_SERVICE_ROLES:
            raise AppError("Invalid role.", 400)

        normalized_email = (email or "").strip().lower()
        if not (full_name or "").strip() or not normalized_email or not password:
            raise AppError("Name, email, and password are required.", 400)
        if "@" not in normalized_email:
            raise AppError("Invalid email address.", 400)
        if len(password) < 8:
            raise AppError("Password must be at least 8 characters.", 400)

        if User.query.filter_by(email=normalized_email).first():
            raise AppError("Email already registered.", 409)

        if guardian_id is not None:
            if role != "student":
                raise AppError("Only students can be linked to a guardian.", 400)
            guardian = db.session.get(User, guardian_id)
            if not guardian or guardian.role != "guardian":
                raise AppError("Guardian not found.", 404)

        user = User(
            full_name=full_name.strip(),
            email=normalized_email,
            phone=AuthService._normalize_phone(phone),
            role=role,
            guardian_id=guardian_id,
            password_hash=bcrypt.generate_password_hash(password).decode("utf-8"),
        )
        try:
            db.session.add(user)
            db.session.flush()
            AuthService._provision(user)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            message = str(getattr(exc, "orig", exc)).lower()
            if "users.email" in message:
                raise AppError("Email already registered.", 409) from exc
            raise AppError("Could not create account due to invalid data.", 400) from exc
        return user

    @staticmethod
    def register_child(guardian, full_name, email, password, phone=None):
        """Create a student account owned by ``guardian``."""
        if guardian.role != "guardian":
            raise AppError("Only guardians can add children.", 403)
        child = AuthService.register_user(full_name, email, password, "student", phone=phone, guardian_id=guardian.id)
        current_app.logger.info("Child account added guardian_id=%s child_id=%s", guardian.id, child.id)
        return child

    @staticmethod
    def create_admin(full_name, email, password):
        normalized_email = (email or "").strip().lower()
        if User.query.filter_by(email=normalized_email).first():
            raise AppError("Email already registered.", 409)
        user = User(
            full_name=(full_name or "Administrator").strip(),
            email=normalized_email,
            role="admin",
            password_hash=bcrypt.generate_password_hash(password).decode("utf-8"),
        )
        db.session.add(user)
        db.session.commit()
        return user

    @staticmethod
    def authenticate_user(email, password):
        user = User.query.filter_by(email=(email or "").strip().lower()).first()
        if not user:
            raise AppError("Invalid credentials.", 401)

        try:
            is_valid = bcrypt.check_password_hash(user.password_hash, password or "")
        except ValueError:
            is_valid = False

        if not is_valid:
            raise AppError("Invalid credentials.", 401)
        if not user.is_active_user:
            raise AppError("User account is inactive.", 403)
        user.last_login = utcnow()
        db.session.commit()
        return user
