from datetime import timedelta

from flask import current_app

from app.errors import AppError
from app.extensions import db
from app.models import TeachingSession
from app.services.booking_service import BookingService
from app.services.notification_service import NotificationService
from app.services.wallet_service import WalletService
from app.utils import as_utc, utcnow


class SessionService:
    @staticmethod
    def get_for_user(session_id, user):
        session = db.session.get(TeachingSession, session_id)
        if not session:
            raise AppError("Session not found.", 404)
        if not (user.is_admin or SessionService._side(session, user)):
            booking = session.booking
            if not (user.role == "guardian" and booking.student.guardian_id == user.id):
                raise AppError("Session not found.", 404)
        return session

    @staticmethod
    def _side(session, user):
        if user.id == session.teacher_id:
            return "teacher"
        if user.id == session.student_id:
            return "student"
        return None

    @staticmethod
    def list_for_user(user, status=None, page=1, per_page=20):
        query = TeachingSession.query
        if user.role == "teacher":
            query = query.filter(TeachingSession.teacher_id == user.id)
        elif not user.is_admin:
            query = query.filter(TeachingSession.student_id == user.id)
        if status:
            query = query.filter(TeachingSession.status == status)
        return query.order_by(TeachingSession.start_time.desc()).paginate(
            page=page, per_page=per_page, error_out=False
        )

    @staticmethod
    def join_session(session, user, now=None):
        side = SessionService._side(session, user)
        if side is None:
            raise AppError("Only session participants can join.", 403)
        if session.status not in {"scheduled", "in_progress"}:
            raise AppError(f"Session is {session.status}.", 409)

        now = now or utcnow()
        early = timedelta(minutes=current_app.config["SESSION_JOIN_EARLY_MINUTES"])
        if now < as_utc(session.start_time) - early:
            raise AppError("Session is not open yet.", 409)
        if now > as_utc(session.end_time):
            raise AppError("Session has already ended.", 409)

        if side == "teacher":
            session.teacher_marked_present = True
            session.teacher_joined_at = session.teacher_joined_at or now
        else:
            session.student_marked_present = True
            session.student_joined_at = session.student_joined_at or now

        if session.status == "scheduled":
            session.status = "in_progress"
            booking = session.booking
            if booking.status in {"approved", "upcoming"}:
                booking.status = "in_progress"
                BookingService.log_history(booking, "started", user.id)
        db.session.commit()
        return session

    @staticmethod
    def leave_session(session, user, now=None):
        side = SessionService._side(session, user)
        if side is None:
            raise AppError("Only session participants can leave.", 403)
        now = now or utcnow()
        if side == "teacher":
            if not session.teacher_joined_at:
                raise AppError("You have not joined this session.", 409)
            session.teacher_left_at = now
        else:
            if not session.student_joined_at:
                raise AppError("You have not joined this session.", 409)
            session.student_left_at = now
        db.session.commit()
        return session

    @staticmethod
    def complete_session(session, actor, notes=None, now=None):
        if not (actor.is_admin or actor.id == session.teacher_id):
            raise AppError("Only the teacher can complete this session.", 403)
        if session.earnings_credited_at is not None:
            raise AppError("Session earnings already credited.", 409)
        if session.status not in {"scheduled", "in_progress"}:
            raise AppError(f"Session cannot be completed while {session.status}.", 409)

        now = now or utcnow()
        if session.status == "scheduled" and now < as_utc(session.start_time):
            raise AppError("Session has not started yet.", 409)
        if not (session.teacher_marked_present or session.student_marked_present):
            raise AppError("Nobody joined this session.", 409)

        booking = session.booking
        BookingService._check_transition(booking, "completed")

        if session.teacher_joined_at and not session.teacher_left_at:
            session.teacher_left_at = now
        session.actual_duration_minutes = session.calculate_duration()
        session.attendance_count = session.calculate_attendance_count()
        session.teacher_notes = (notes or "").strip() or session.teacher_notes
        session.completion_date = now
        session.status = "completed"

        booking.status = "completed"
        BookingService.log_history(booking, "completed", actor.id)
        WalletService.pay_session(session)
        NotificationService.push(
            session.student_id,
            "Session completed",
            f"Session {session.session_uuid} has been completed. You can now leave a review.",
            type="session_completed",
            related=("teaching_session", session.id),
        )
        db.session.commit()
        return session

    @staticmethod
    def rate_session(session, user, rating):
        side = SessionService._side(session, user)
        if side is None:
            raise AppError("Only session participants can rate.", 403)
        if session.status != "completed":
            raise AppError("Only completed sessions can be rated.", 409)
        try:
            value = int(rating)
        except (TypeError, ValueError) as exc:
            raise AppError("Rating must be between 1 and 5.", 400) from exc
        if not 1 <= value <= 5:
            raise AppError("Rating must be between 1 and 5.", 400)
        # Each side rates the other.
        if side == "teacher":
            session.student_rating = value
        else:
            session.teacher_rating = value
        db.session.commit()
        return session
