from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_

from app.errors import AppError
from app.extensions import db
from app.models import Booking, BookingHistory, Subject, TeacherProfile, TeachingSession, User
from app.models.booking import ACTIVE_BOOKING_STATUSES, TERMINAL_BOOKING_STATUSES
from app.services.notification_service import NotificationService
from app.services.platform_service import PlatformService
from app.services.wallet_service import WalletService
from app.utils import CENT, as_utc, quantize, reference_code, unique_token, utcnow

BOOKING_TRANSITIONS = {
    "pending": {"approved", "rejected", "cancelled"},
    "approved": {"upcoming", "in_progress", "cancelled", "missed"},
    "upcoming": {"in_progress", "cancelled", "missed", "completed"},
    "in_progress": {"completed", "missed"},
    "completed": set(),
    "rejected": set(),
    "cancelled": set(),
    "missed": set(),
}

STUDENT_CANCELLABLE = {"pending", "approved", "upcoming"}
REFERENCE_ATTEMPTS = 20


class BookingService:
    @staticmethod
    def _unique_reference(model, column, prefix):
        for _ in range(REFERENCE_ATTEMPTS):
            candidate = reference_code(prefix)
            if not model.query.filter(getattr(model, column) == candidate).first():
                return candidate
        # Short codes for today are nearly exhausted.
        return unique_token(prefix)

    @staticmethod
    def log_history(booking, action, actor_id=None, notes=None):
        db.session.add(BookingHistory(booking_id=booking.id, action=action, performed_by_id=actor_id, notes=notes))

    @staticmethod
    def has_conflict(teacher_id, start_dt, end_dt, exclude_booking_id=None):
        query = (
            Booking.query.filter(Booking.teacher_id == teacher_id)
            .filter(Booking.status.in_(ACTIVE_BOOKING_STATUSES))
            .filter(Booking.start_time < end_dt, Booking.end_time > start_dt)
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.first() is not None

    @staticmethod
    def bookable_profile(teacher_id):
        profile = TeacherProfile.query.filter_by(user_id=teacher_id).first()
        if not profile or not profile.user.is_active_user:
            raise AppError("Teacher not found.", 404)
        if not profile.is_verified:
            raise AppError("Teacher is not verified.", 409)
        if profile.holiday_mode:
            raise AppError("Teacher is on holiday.", 409)
        if not profile.hourly_rate_ngn or quantize(profile.hourly_rate_ngn) <= 0:
            raise AppError("Teacher has not set an hourly rate.", 409)
        return profile

    @staticmethod
    def validate_duration(duration_minutes):
        try:
            minutes = int(duration_minutes)
        except (TypeError, ValueError) as exc:
            raise AppError("Duration must be a whole number of minutes.", 400) from exc
        low = current_app.config["MIN_BOOKING_MINUTES"]
        high = current_app.config["MAX_BOOKING_MINUTES"]
        if not low <= minutes <= high:
            raise AppError(f"Duration must be between {low} and {high} minutes.", 400)
        return minutes

    @staticmethod
    def price_for(hourly_rate_ngn, duration_minutes):
        return (quantize(hourly_rate_ngn) * Decimal(duration_minutes) / Decimal(60)).quantize(CENT)

    @staticmethod
    def subject_for_teacher(profile, subject_id):
        if subject_id is None:
            return None
        subject = Subject.query.filter_by(id=subject_id, teacher_profile_id=profile.id, is_active=True).first()
        if not subject:
            raise AppError("Subject is not offered by this teacher.", 400)
        return subject

    @staticmethod
    def _resolve_parties(actor, student_id):
        """Return (student, payer) for a booking placed by ``actor``."""
        if actor.role == "student":
            if student_id not in (None, actor.id):
                raise AppError("Students can only book for themselves.", 403)
            return actor, actor
        if actor.role == "guardian":
            child = db.session.get(User, student_id) if student_id else None
            if not child or child.guardian_id != actor.id:
                raise AppError("Guardians can only book for their own children.", 403)
            return child, actor
        if actor.role == "admin":
            student = db.session.get(User, student_id) if student_id else None
            if not student or student.role != "student":
                raise AppError("Student not found.", 404)
            return student, student
        raise AppError("Teachers cannot create bookings.", 403)

    @staticmethod
    def create_session_for(booking):
        if booking.teaching_session:
            return booking.teaching_session
        session = TeachingSession(
            session_uuid=BookingService._unique_reference(TeachingSession, "session_uuid", "S"),
            booking_id=booking.id,
            teacher_id=booking.teacher_id,
            student_id=booking.student_id,
            subject_id=booking.subject_id,
            start_time=booking.start_time,
            end_time=booking.end_time,
            status="scheduled",
        )
        db.session.add(session)
        db.session.flush()
        booking.teaching_session = session
        return session

    @staticmethod
    def create_booking(actor, teacher_id, subject_id, start_time, duration_minutes, notes=None, student_id=None):
        student, payer = BookingService._resolve_parties(actor, student_id)
        profile = BookingService.bookable_profile(teacher_id)
        subject = BookingService.subject_for_teacher(profile, subject_id)
        minutes = BookingService.validate_duration(duration_minutes)

        start_dt = as_utc(start_time)
        if start_dt <= utcnow():
            raise AppError("Booking start time must be in the future.", 400)
        end_dt = start_dt + timedelta(minutes=minutes)
        if BookingService.has_conflict(teacher_id, start_dt, end_dt):
            raise AppError("Teacher already booked for the selected time slot.", 409)

        amount = BookingService.price_for(profile.hourly_rate_ngn, minutes)
        booking = Booking(
            booking_uuid=BookingService._unique_reference(Booking, "booking_uuid", "BK"),
            student_id=student.id,
            teacher_id=teacher_id,
            subject_id=subject.id if subject else None,
            created_by_id=actor.id,
            start_time=start_dt,
            end_time=end_dt,
            duration_minutes=minutes,
            status="pending",
            notes=(notes or "").strip() or None,
            hourly_rate_ngn=quantize(profile.hourly_rate_ngn),
            hourly_rate_usd=profile.hourly_rate_usd,
            rate_currency=profile.preferred_currency or "NGN",
            exchange_rate_used=PlatformService.get_decimal("usd_to_ngn_rate"),
            amount_ngn=amount,
            paid_by_id=payer.id,
        )
        db.session.add(booking)
        db.session.flush()

        WalletService.debit(payer.id, amount, f"Booking {booking.booking_uuid}", booking_id=booking.id)
        BookingService.log_history(booking, "created", actor.id)
        NotificationService.push(
            teacher_id,
            "New booking request",
            f"{student.full_name} requested a session on {start_dt:%Y-%m-%d %H:%M} UTC.",
            type="booking_request",
            related=("booking", booking.id),
        )
        db.session.commit()
        current_app.logger.info(
            "Booking created uuid=%s student=%s teacher=%s amount=%s", booking.booking_uuid, student.id, teacher_id, amount
        )
        return booking

    @staticmethod
    def get_for_user(booking_id, user):
        booking = db.session.get(Booking, booking_id)
        if not booking or not BookingService.can_view(booking, user):
            raise AppError("Booking not found.", 404)
        return booking

    @staticmethod
    def can_view(booking, user):
        if user.is_admin:
            return True
        if user.id in (booking.student_id, booking.teacher_id, booking.paid_by_id):
            return True
        return user.role == "guardian" and booking.student.guardian_id == user.id

    @staticmethod
    def list_for_user(user, status=None, page=1, per_page=20):
        query = Booking.query
        if user.role == "teacher":
            query = query.filter(Booking.teacher_id == user.id)
        elif user.role == "guardian":
            child_ids = [row.id for row in user.children.with_entities(User.id).all()]
            query = query.filter(or_(Booking.student_id.in_(child_ids), Booking.paid_by_id == user.id))
        elif not user.is_admin:
            query = query.filter(Booking.student_id == user.id)
        if status:
            query = query.filter(Booking.status == status)
        return query.order_by(Booking.start_time.desc()).paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def admin_list(status=None, teacher_id=None, student_id=None, date_from=None, date_to=None, page=1, per_page=20):
        query = Booking.query
        if status:
            query = query.filter(Booking.status == status)
        if teacher_id:
            query = query.filter(Booking.teacher_id == teacher_id)
        if student_id:
            query = query.filter(Booking.student_id == student_id)
        if date_from:
            query = query.filter(Booking.start_time >= date_from)
        if date_to:
            query = query.filter(Booking.start_time < date_to)
        return query.order_by(Booking.start_time.desc()).paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def _check_transition(booking, new_status):
        if new_status not in BOOKING_TRANSITIONS.get(booking.status, set()):
            raise AppError(f"Invalid status transition from {booking.status} to {new_status}.", 400)

    @staticmethod
    def _refund_payer(booking, reason):
        amount = quantize(booking.amount_ngn)
        if amount > 0:
            WalletService.refund(
                booking.paid_by_id or booking.student_id,
                amount,
                f"Refund for booking {booking.booking_uuid}: {reason}"[:255],
                booking_id=booking.id,
            )

    @staticmethod
    def _mark_approved(booking, actor):
        if booking.approved_at is None:
            booking.approved_at = utcnow()
            booking.approved_by_id = actor.id
        BookingService.create_session_for(booking)

    @staticmethod
    def approve_booking(booking, actor):
        if not (actor.is_admin or actor.id == booking.teacher_id):
            raise AppError("Not authorized for this booking.", 403)
        if booking.status != "pending":
            raise AppError("Only pending bookings can be approved.", 409)
        if as_utc(booking.end_time) <= utcnow():
            raise AppError("Booking time has already passed.", 409)

        booking.status = "approved"
        BookingService._mark_approved(booking, actor)
        BookingService.log_history(booking, "approved", actor.id)
        NotificationService.push(
            booking.student_id,
            "Booking approved",
            f"Your booking {booking.booking_uuid} was approved.",
            type="booking_approved",
            related=("booking", booking.id),
        )
        db.session.commit()
        return booking

    @staticmethod
    def reject_booking(booking, actor, reason=None):
        if not (actor.is_admin or actor.id == booking.teacher_id):
            raise AppError("Not authorized for this booking.", 403)
        if booking.status != "pending":
            raise AppError("Only pending bookings can be rejected.", 409)

        reason = (reason or "").strip() or "Rejected by teacher"
        booking.status = "rejected"
        booking.cancellation_reason = reason
        BookingService._refund_payer(booking, reason)
        BookingService.log_history(booking, "rejected", actor.id, reason)
        NotificationService.push(
            booking.student_id,
            "Booking rejected",
            f"Your booking {booking.booking_uuid} was rejected. The amount was refunded to your wallet.",
            type="booking_rejected",
            related=("booking", booking.id),
        )
        db.session.commit()
        return booking

    @staticmethod
    def _check_cancel_permission(booking, actor, now):
        if actor.is_admin:
            if booking.status in TERMINAL_BOOKING_STATUSES or booking.status == "in_progress":
                raise AppError(f"Booking cannot be cancelled while {booking.status}.", 409)
            return

        owns = actor.id == booking.student_id or (
            actor.role == "guardian" and booking.student.guardian_id == actor.id
        )
        if not owns:
            raise AppError("Not authorized for this booking.", 403)
        if booking.status not in STUDENT_CANCELLABLE:
            raise AppError(f"Booking cannot be cancelled while {booking.status}.", 409)

        starts_at = as_utc(booking.start_time)
        if booking.status == "pending":
            if starts_at <= now:
                raise AppError("Booking has already started.", 409)
            return
        notice = timedelta(hours=current_app.config["CANCELLATION_NOTICE_HOURS"])
        if starts_at - now < notice:
            raise AppError(
                f"Approved bookings must be cancelled at least {current_app.config['CANCELLATION_NOTICE_HOURS']} hours before the start.",
                409,
            )

    @staticmethod
    def cancel_booking(booking, actor, reason=None, commit=True):
        now = utcnow()
        BookingService._check_cancel_permission(booking, actor, now)

        reason = (reason or "").strip() or "Cancelled"
        booking.status = "cancelled"
        booking.cancelled_at = now
        booking.cancelled_by_id = actor.id
        booking.cancellation_reason = reason
        if booking.teaching_session:
            booking.teaching_session.status = "cancelled"
        BookingService._refund_payer(booking, reason)
        BookingService.log_history(booking, "cancelled", actor.id, reason)

        recipients = {booking.teacher_id, booking.student_id} - {actor.id}
        for user_id in recipients:
            NotificationService.push(
                user_id,
                "Booking cancelled",
                f"Booking {booking.booking_uuid} was cancelled: {reason}",
                type="booking_cancelled",
                related=("booking", booking.id),
            )
        if commit:
            db.session.commit()
        current_app.logger.info("Booking cancelled uuid=%s by=%s", booking.booking_uuid, actor.id)
        return booking

    @staticmethod
    def admin_update_status(booking, new_status, admin, notes=None):
        new_status = (new_status or "").strip().lower()
        BookingService._check_transition(booking, new_status)
        if new_status == "cancelled":
            return BookingService.cancel_booking(booking, admin, notes)
        if new_status == "rejected":
            return BookingService.reject_booking(booking, admin, notes)

        now = utcnow()
        booking.status = new_status
        if new_status in {"approved", "upcoming"}:
            BookingService._mark_approved(booking, admin)
        session = booking.teaching_session
        if new_status == "in_progress":
            session = session or BookingService.create_session_for(booking)
            session.status = "in_progress"
        elif new_status == "missed" and session:
            session.status = "missed"
        elif new_status == "completed":
            session = session or BookingService.create_session_for(booking)
            session.status = "completed"
            session.completion_date = now
            session.attendance_count = session.calculate_attendance_count()
            if session.earnings_credited_at is None:
                WalletService.pay_session(session)

        BookingService.log_history(booking, f"status:{new_status}", admin.id, notes)
        NotificationService.push(
            booking.student_id,
            "Booking updated",
            f"Booking {booking.booking_uuid} is now {new_status.replace('_', ' ')}.",
            type="booking_status",
            related=("booking", booking.id),
        )
        db.session.commit()
        return booking

    @staticmethod
    def reassign_booking(booking, new_teacher_id, admin, note=None, notify=True):
        if booking.status not in {"pending", "approved", "upcoming"}:
            raise AppError(f"Booking cannot be reassigned while {booking.status}.", 409)
        if new_teacher_id == booking.teacher_id:
            raise AppError("Booking is already assigned to this teacher.", 400)
        profile = BookingService.bookable_profile(new_teacher_id)
        if BookingService.has_conflict(new_teacher_id, booking.start_time, booking.end_time):
            raise AppError("New teacher is not available at this time.", 409)

        old_teacher_id = booking.teacher_id
        if booking.subject_id:
            matching = profile.subjects.filter_by(name=booking.subject.name, is_active=True).first()
            booking.subject_id = matching.id if matching else None
        booking.teacher_id = new_teacher_id
        if booking.teaching_session:
            booking.teaching_session.teacher_id = new_teacher_id
            booking.teaching_session.subject_id = booking.subject_id
        BookingService.log_history(
            booking, "reassigned", admin.id, (note or "").strip() or f"Teacher {old_teacher_id} -> {new_teacher_id}"
        )

        if notify:
            related = ("booking", booking.id)
            NotificationService.push(
                old_teacher_id, "Booking reassigned", f"Booking {booking.booking_uuid} was reassigned.",
                type="booking_reassigned", related=related,
            )
            NotificationService.push(
                new_teacher_id, "New booking assigned", f"Booking {booking.booking_uuid} was assigned to you.",
                type="booking_reassigned", related=related,
            )
            NotificationService.push(
                booking.student_id, "Teacher changed", f"Booking {booking.booking_uuid} has a new teacher.",
                type="booking_reassigned", related=related,
            )
        db.session.commit()
        return booking

    @staticmethod
    def move_booking(booking, new_start):
        """Shift a booking and its session to ``new_start`` keeping the duration."""
        new_start = as_utc(new_start)
        if new_start <= utcnow():
            raise AppError("New start time must be in the future.", 400)
        new_end = new_start + timedelta(minutes=booking.duration_minutes)
        if BookingService.has_conflict(booking.teacher_id, new_start, new_end, exclude_booking_id=booking.id):
            raise AppError("Teacher already booked for the selected time slot.", 409)
        booking.start_time = new_start
        booking.end_time = new_end
        if booking.teaching_session:
            booking.teaching_session.start_time = new_start
            booking.teaching_session.end_time = new_end
            booking.teaching_session.reminder_sent_at = None
        return booking

    @staticmethod
    def reschedule_booking(booking, new_start, admin, reason=None, notify=True):
        if booking.status not in {"pending", "approved", "upcoming"}:
            raise AppError(f"Booking cannot be rescheduled while {booking.status}.", 409)
        BookingService.move_booking(booking, new_start)
        BookingService.log_history(booking, "rescheduled", admin.id, (reason or "").strip() or None)
        if notify:
            message = f"Booking {booking.booking_uuid} moved to {as_utc(booking.start_time):%Y-%m-%d %H:%M} UTC."
            for user_id in (booking.student_id, booking.teacher_id):
                NotificationService.push(
                    user_id, "Booking rescheduled", message, type="booking_rescheduled", related=("booking", booking.id)
                )
        db.session.commit()
        return booking

    @staticmethod
    def mark_missed_bookings(now=None):
        now = now or utcnow()
        candidates = (
            Booking.query.filter(Booking.status.in_(["approved", "upcoming"]))
            .filter(Booking.end_time < now)
            .all()
        )
        missed = 0
        for booking in candidates:
            session = booking.teaching_session
            if session and (session.teacher_joined_at or session.student_joined_at):
                continue
            booking.status = "missed"
            if session:
                session.status = "missed"
            BookingService.log_history(booking, "missed", None, "No session start before end time")
            missed += 1
        db.session.commit()
        if missed:
            current_app.logger.info("Marked %s bookings as missed", missed)
        return missed

    @staticmethod
    def booking_stats(now=None):
        now = now or utcnow()
        counts = {status: 0 for status in BOOKING_TRANSITIONS}
        for status, total in db.session.query(Booking.status, func.count(Booking.id)).group_by(Booking.status).all():
            counts[status] = total

        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = day_start - timedelta(days=day_start.weekday())
        month_start = day_start.replace(day=1)

        def created_since(moment):
            return Booking.query.filter(Booking.created_at >= moment).count()

        return {
            "total": sum(counts.values()),
            "by_status": counts,
            "today": created_since(day_start),
            "this_week": created_since(week_start),
            "this_month": created_since(month_start),
        }
