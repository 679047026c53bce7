from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import or_

from app.errors import AppError
from app.extensions import db
from app.models import Booking, BookingModification
from app.services.booking_service import BookingService
from app.services.notification_service import NotificationService
from app.services.wallet_service import WalletService
from app.utils import CENT, as_utc, quantize, utcnow

EXPIRY_DAYS = {"reschedule": 3, "rebook": 5}
MODIFIABLE_BOOKING_STATUSES = {"pending", "approved", "upcoming"}
OPEN_MODIFICATION_STATUSES = ("pending", "approved")


class ModificationService:
    @staticmethod
    def _check_owner(booking, student):
        owns = booking.student_id == student.id or (
            student.role == "guardian" and booking.student.guardian_id == student.id
        )
        if not owns:
            raise AppError("Not authorized for this booking.", 403)
        if booking.status not in MODIFIABLE_BOOKING_STATUSES:
            raise AppError(f"Booking cannot be modified while {booking.status}.", 409)
        open_request = (
            BookingModification.query.filter_by(booking_id=booking.id)
            .filter(BookingModification.status.in_(OPEN_MODIFICATION_STATUSES))
            .first()
        )
        if open_request:
            raise AppError("This booking already has an open modification request.", 409)

    @staticmethod
    def _new_window(booking, new_start):
        new_start = as_utc(new_start)
        if new_start <= utcnow():
            raise AppError("New start time must be in the future.", 400)
        return new_start, new_start + timedelta(minutes=booking.duration_minutes)

    @staticmethod
    def get(modification_id):
        modification = db.session.get(BookingModification, modification_id)
        if not modification:
            raise AppError("Modification request not found.", 404)
        return modification

    @staticmethod
    def create_reschedule_request(booking, student, new_start, reason=None):
        ModificationService._check_owner(booking, student)
        new_start, new_end = ModificationService._new_window(booking, new_start)
        if BookingService.has_conflict(booking.teacher_id, new_start, new_end, exclude_booking_id=booking.id):
            raise AppError("Teacher already booked for the selected time slot.", 409)

        modification = BookingModification(
            booking_id=booking.id,
            student_id=booking.student_id,
            teacher_id=booking.teacher_id,
            requested_by_id=student.id,
            type="reschedule",
            status="pending",
            new_teacher_id=booking.teacher_id,
            new_subject_id=booking.subject_id,
            new_start_time=new_start,
            new_end_time=new_end,
            new_duration_minutes=booking.duration_minutes,
            price_difference=0,
            reason=(reason or "").strip() or None,
            expires_at=utcnow() + timedelta(days=EXPIRY_DAYS["reschedule"]),
        )
        db.session.add(modification)
        db.session.flush()
        NotificationService.push(
            booking.teacher_id,
            "Reschedule requested",
            f"A reschedule to {new_start:%Y-%m-%d %H:%M} UTC was requested for booking {booking.booking_uuid}.",
            type="modification_request",
            related=("booking_modification", modification.id),
        )
        db.session.commit()
        return modification

    @staticmethod
    def create_rebook_request(booking, student, new_teacher_id, new_subject_id, new_start, reason=None):
        ModificationService._check_owner(booking, student)
        profile = BookingService.bookable_profile(new_teacher_id)
        subject = BookingService.subject_for_teacher(profile, new_subject_id)
        new_start, new_end = ModificationService._new_window(booking, new_start)
        exclude = booking.id if new_teacher_id == booking.teacher_id else None
        if BookingService.has_conflict(new_teacher_id, new_start, new_end, exclude_booking_id=exclude):
            raise AppError("New teacher is not available at this time.", 409)

        hours = Decimal(booking.duration_minutes) / Decimal(60)
        difference = ((quantize(profile.hourly_rate_ngn) - quantize(booking.hourly_rate_ngn)) * hours).quantize(CENT)
        modification = BookingModification(
            booking_id=booking.id,
            student_id=booking.student_id,
            teacher_id=new_teacher_id,
            requested_by_id=student.id,
            type="rebook",
            status="pending",
            new_teacher_id=new_teacher_id,
            new_subject_id=subject.id if subject else None,
            new_start_time=new_start,
            new_end_time=new_end,
            new_duration_minutes=booking.duration_minutes,
            price_difference=difference,
            new_hourly_rate_ngn=quantize(profile.hourly_rate_ngn),
            new_hourly_rate_usd=profile.hourly_rate_usd,
            new_rate_currency=profile.preferred_currency or "NGN",
            reason=(reason or "").strip() or None,
            expires_at=utcnow() + timedelta(days=EXPIRY_DAYS["rebook"]),
        )
        db.session.add(modification)
        db.session.flush()
        related = ("booking_modification", modification.id)
        NotificationService.push(
            new_teacher_id,
            "Rebooking request",
            f"A student asked to move booking {booking.booking_uuid} to you.",
            type="modification_request",
            related=related,
        )
        if booking.teacher_id != new_teacher_id:
            NotificationService.push(
                booking.teacher_id,
                "Rebooking requested",
                f"The student of booking {booking.booking_uuid} asked to rebook with another teacher.",
                type="modification_request",
                related=related,
            )
        db.session.commit()
        return modification

    @staticmethod
    def _ensure_actionable(modification, teacher, now):
        if modification.teacher_id != teacher.id:
            raise AppError("Not authorized for this request.", 403)
        if modification.status != "pending":
            raise AppError(f"Request is already {modification.status}.", 409)
        if as_utc(modification.expires_at) <= now:
            modification.status = "expired"
            db.session.commit()
            raise AppError("Request has expired.", 409)

    @staticmethod
    def _apply_rebook(modification, teacher, now):
        old = modification.booking
        if old.status not in MODIFIABLE_BOOKING_STATUSES:
            raise AppError(f"Booking cannot be modified while {old.status}.", 409)
        exclude = old.id if modification.new_teacher_id == old.teacher_id else None
        if BookingService.has_conflict(
            modification.new_teacher_id, modification.new_start_time, modification.new_end_time, exclude
        ):
            raise AppError("New teacher is not available at this time.", 409)

        BookingService.bookable_profile(modification.new_teacher_id)
        payer_id = old.paid_by_id or old.student_id
        difference = quantize(modification.price_difference)

        old.status = "cancelled"
        old.cancelled_at = now
        old.cancelled_by_id = modification.requested_by_id
        old.cancellation_reason = "Rebooked"
        if old.teaching_session:
            old.teaching_session.status = "cancelled"
        BookingService.log_history(old, "rebooked", teacher.id, f"Modification {modification.id}")

        new_booking = Booking(
            booking_uuid=BookingService._unique_reference(Booking, "booking_uuid", "BK"),
            student_id=old.student_id,
            teacher_id=modification.new_teacher_id,
            subject_id=modification.new_subject_id,
            created_by_id=modification.requested_by_id,
            start_time=modification.new_start_time,
            end_time=modification.new_end_time,
            duration_minutes=modification.new_duration_minutes,
            status="approved",
            notes=old.notes,
            hourly_rate_ngn=quantize(modification.new_hourly_rate_ngn),
            hourly_rate_usd=modification.new_hourly_rate_usd,
            rate_currency=modification.new_rate_currency or "NGN",
            exchange_rate_used=old.exchange_rate_used,
            amount_ngn=quantize(old.amount_ngn) + difference,
            paid_by_id=payer_id,
            approved_by_id=teacher.id,
            approved_at=now,
        )
        db.session.add(new_booking)
        db.session.flush()
        BookingService.create_session_for(new_booking)
        BookingService.log_history(new_booking, "created_from_rebook", teacher.id, f"From {old.booking_uuid}")

        if difference > 0:
            WalletService.debit(payer_id, difference, f"Rebook difference for {new_booking.booking_uuid}", new_booking.id)
        elif difference < 0:
            WalletService.refund(payer_id, -difference, f"Rebook difference for {new_booking.booking_uuid}", new_booking.id)
        modification.new_booking_id = new_booking.id
        return new_booking

    @staticmethod
    def approve_modification(modification, teacher, notes=None):
        now = utcnow()
        ModificationService._ensure_actionable(modification, teacher, now)

        if modification.type == "reschedule":
            booking = modification.booking
            if booking.status not in MODIFIABLE_BOOKING_STATUSES:
                raise AppError(f"Booking cannot be modified while {booking.status}.", 409)
            BookingService.move_booking(booking, modification.new_start_time)
            BookingService.log_history(booking, "rescheduled", teacher.id, modification.reason)
        else:
            ModificationService._apply_rebook(modification, teacher, now)

        modification.status = "completed"
        modification.responded_at = now
        modification.teacher_notes = (notes or "").strip() or None
        NotificationService.push(
            modification.student_id,
            "Request approved",
            f"Your {modification.type} request for booking {modification.booking.booking_uuid} was approved.",
            type="modification_approved",
            related=("booking_modification", modification.id),
        )
        db.session.commit()
        current_app.logger.info("Modification %s (%s) approved by %s", modification.id, modification.type, teacher.id)
        return modification

    @staticmethod
    def reject_modification(modification, teacher, notes=None):
        ModificationService._ensure_actionable(modification, teacher, utcnow())
        modification.status = "rejected"
        modification.responded_at = utcnow()
        modification.teacher_notes = (notes or "").strip() or None
        NotificationService.push(
            modification.student_id,
            "Request declined",
            f"Your {modification.type} request for booking {modification.booking.booking_uuid} was declined.",
            type="modification_rejected",
            related=("booking_modification", modification.id),
        )
        db.session.commit()
        return modification

    @staticmethod
    def cancel_modification(modification, student):
        booking = modification.booking
        owns = student.id in (modification.student_id, modification.requested_by_id) or (
            student.role == "guardian" and booking.student.guardian_id == student.id
        )
        if not owns:
            raise AppError("Not authorized for this request.", 403)
        if modification.status not in OPEN_MODIFICATION_STATUSES:
            raise AppError(f"Request is already {modification.status}.", 409)
        modification.status = "cancelled"
        modification.responded_at = utcnow()
        db.session.commit()
        return modification

    @staticmethod
    def list_for_user(user, status=None):
        query = BookingModification.query
        if user.role == "teacher":
            query = query.filter(BookingModification.teacher_id == user.id)
        elif not user.is_admin:
            query = query.filter(
                or_(BookingModification.student_id == user.id, BookingModification.requested_by_id == user.id)
            )
        if status:
            query = query.filter(BookingModification.status == status)
        return query.order_by(BookingModification.created_at.desc(), BookingModification.id.desc()).all()

    @staticmethod
    def expire_old_modifications(now=None):
        now = now or utcnow()
        stale = (
            BookingModification.query.filter_by(status="pending")
            .filter(BookingModification.expires_at <= now)
            .all()
        )
        for modification in stale:
            modification.status = "expired"
            NotificationService.push(
                modification.student_id,
                "Request expired",
                f"Your {modification.type} request for booking {modification.booking.booking_uuid} expired.",
                type="modification_expired",
                related=("booking_modification", modification.id),
            )
        db.session.commit()
        if stale:
            current_app.logger.info("Expired %s modification requests", len(stale))
        return len(stale)
