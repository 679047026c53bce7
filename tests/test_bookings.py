"""Tests for the booking lifecycle service."""
import re
from datetime import timedelta
from decimal import Decimal

import pytest

from app.errors import AppError
from app.extensions import db
from app.models import Booking, BookingHistory, Notification, StudentWallet, TeacherProfile, TeacherWallet, WalletTransaction
from app.services import BookingService, WalletService
from app.utils import as_utc, utcnow
from tests.conftest import subject_id_for


def _book(student, teacher, start, minutes=60, **kwargs):
    return BookingService.create_booking(
        student,
        teacher_id=teacher.id,
        subject_id=subject_id_for(teacher),
        start_time=start,
        duration_minutes=minutes,
        **kwargs,
    )


def _balance(user):
    return StudentWallet.query.filter_by(user_id=user.id).first().balance


class TestCreateBooking:
    """Booking creation, pricing and wallet debit."""

    def test_create_debits_wallet_and_notifies_teacher(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)

        assert booking.status == "pending"
        assert re.fullmatch(r"BK-\d{9}", booking.booking_uuid)
        assert booking.amount_ngn == Decimal("5000.00")
        assert booking.approved_at is None
        assert _balance(student) == Decimal("15000.00")

        debit = WalletTransaction.query.filter_by(user_id=student.id, transaction_type="debit").one()
        assert debit.booking_id == booking.id
        assert debit.amount == Decimal("5000.00")
        assert Notification.query.filter_by(user_id=teacher.id, type="booking_request").count() == 1
        assert BookingHistory.query.filter_by(booking_id=booking.id, action="created").count() == 1

    def test_price_scales_with_duration(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start, minutes=90)

        assert booking.amount_ngn == Decimal("7500.00")
        assert as_utc(booking.end_time) - as_utc(booking.start_time) == timedelta(minutes=90)

    def test_overlapping_booking_is_rejected(self, make_user, student, teacher, future_start):
        _book(student, teacher, future_start)
        other = make_user("student")
        WalletService.fund_wallet(other, "10000")

        with pytest.raises(AppError) as exc:
            _book(other, teacher, future_start + timedelta(minutes=30))
        assert exc.value.status_code == 409

    def test_back_to_back_booking_is_allowed(self, student, teacher, future_start):
        _book(student, teacher, future_start)
        second = _book(student, teacher, future_start + timedelta(minutes=60))

        assert second.status == "pending"

    def test_insufficient_balance_rolls_back(self, make_user, teacher, future_start):
        poor = make_user("student")

        with pytest.raises(AppError) as exc:
            _book(poor, teacher, future_start)
        db.session.rollback()

        assert exc.value.status_code == 402
        assert Booking.query.count() == 0

    def test_unverified_teacher_cannot_be_booked(self, make_user, student, future_start):
        newcomer = make_user("teacher")

        with pytest.raises(AppError) as exc:
            BookingService.create_booking(student, newcomer.id, None, future_start, 60)
        assert exc.value.status_code == 409

    def test_teacher_on_holiday_cannot_be_booked(self, student, teacher, future_start):
        profile = TeacherProfile.query.filter_by(user_id=teacher.id).first()
        profile.holiday_mode = True
        db.session.commit()

        with pytest.raises(AppError) as exc:
            _book(student, teacher, future_start)
        assert exc.value.status_code == 409

    @pytest.mark.parametrize("minutes", [10, 241, "abc"])
    def test_duration_bounds(self, student, teacher, future_start, minutes):
        with pytest.raises(AppError) as exc:
            _book(student, teacher, future_start, minutes=minutes)
        assert exc.value.status_code == 400

    def test_start_must_be_in_future(self, student, teacher):
        with pytest.raises(AppError) as exc:
            _book(student, teacher, utcnow() - timedelta(hours=1))
        assert exc.value.status_code == 400

    def test_teacher_cannot_book(self, make_teacher, teacher, future_start):
        other_teacher = make_teacher()

        with pytest.raises(AppError) as exc:
            _book(other_teacher, teacher, future_start)
        assert exc.value.status_code == 403

    def test_guardian_books_for_child_from_own_wallet(self, make_user, teacher, future_start):
        guardian = make_user("guardian")
        child = make_user("student", guardian_id=guardian.id)
        WalletService.fund_wallet(guardian, "8000")

        booking = _book(guardian, teacher, future_start, student_id=child.id)

        assert booking.student_id == child.id
        assert booking.paid_by_id == guardian.id
        assert _balance(guardian) == Decimal("3000.00")
        assert _balance(child) == Decimal("0.00")

    def test_guardian_cannot_book_for_unrelated_student(self, make_user, student, teacher, future_start):
        guardian = make_user("guardian")
        WalletService.fund_wallet(guardian, "8000")

        with pytest.raises(AppError) as exc:
            _book(guardian, teacher, future_start, student_id=student.id)
        assert exc.value.status_code == 403


class TestApproveAndReject:
    """Teacher responses to pending bookings."""

    def test_approve_creates_session(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)

        BookingService.approve_booking(booking, teacher)

        assert booking.status == "approved"
        assert booking.approved_at is not None
        assert booking.approved_by_id == teacher.id
        session = booking.teaching_session
        assert session.status == "scheduled"
        assert re.fullmatch(r"S-\d{9}", session.session_uuid)
        assert as_utc(session.start_time) == future_start
        assert Notification.query.filter_by(user_id=student.id, type="booking_approved").count() == 1

    def test_other_teacher_cannot_approve(self, make_teacher, student, teacher, future_start):
        booking = _book(student, teacher, future_start)

        with pytest.raises(AppError) as exc:
            BookingService.approve_booking(booking, make_teacher())
        assert exc.value.status_code == 403

    def test_approve_twice_conflicts(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        BookingService.approve_booking(booking, teacher)

        with pytest.raises(AppError) as exc:
            BookingService.approve_booking(booking, teacher)
        assert exc.value.status_code == 409

    def test_reject_refunds_payer(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)

        BookingService.reject_booking(booking, teacher, "Not available")

        assert booking.status == "rejected"
        assert booking.approved_at is None
        assert _balance(student) == Decimal("20000.00")
        wallet = StudentWallet.query.filter_by(user_id=student.id).first()
        assert wallet.total_refunded == Decimal("5000.00")
        assert WalletTransaction.query.filter_by(transaction_type="refund", booking_id=booking.id).count() == 1

    def test_reject_only_pending(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        BookingService.approve_booking(booking, teacher)

        with pytest.raises(AppError) as exc:
            BookingService.reject_booking(booking, teacher)
        assert exc.value.status_code == 409


class TestCancelBooking:
    """Cancellation windows and refunds."""

    def test_student_cancels_pending(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)

        BookingService.cancel_booking(booking, student, "Change of plans")

        assert booking.status == "cancelled"
        assert booking.cancelled_by_id == student.id
        assert _balance(student) == Decimal("20000.00")
        assert Notification.query.filter_by(user_id=teacher.id, type="booking_cancelled").count() == 1

    def test_approved_cancel_cancels_session(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        BookingService.approve_booking(booking, teacher)

        BookingService.cancel_booking(booking, student)

        assert booking.teaching_session.status == "cancelled"
        assert _balance(student) == Decimal("20000.00")

    def test_approved_cancel_needs_notice(self, student, teacher):
        booking = _book(student, teacher, utcnow() + timedelta(hours=1))
        BookingService.approve_booking(booking, teacher)

        with pytest.raises(AppError) as exc:
            BookingService.cancel_booking(booking, student)
        assert exc.value.status_code == 409

    def test_pending_cancel_allowed_close_to_start(self, student, teacher):
        booking = _book(student, teacher, utcnow() + timedelta(hours=1))

        BookingService.cancel_booking(booking, student)

        assert booking.status == "cancelled"

    def test_teacher_cannot_cancel(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)

        with pytest.raises(AppError) as exc:
            BookingService.cancel_booking(booking, teacher)
        assert exc.value.status_code == 403

    def test_admin_cancels_inside_notice_window(self, admin, student, teacher):
        booking = _book(student, teacher, utcnow() + timedelta(hours=1))
        BookingService.approve_booking(booking, teacher)

        BookingService.cancel_booking(booking, admin, "Teacher emergency")

        assert booking.status == "cancelled"
        assert Notification.query.filter_by(user_id=student.id, type="booking_cancelled").count() == 1

    def test_cancelled_slot_can_be_rebooked(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        BookingService.cancel_booking(booking, student)

        again = _book(student, teacher, future_start)

        assert again.status == "pending"


class TestAdminOperations:
    """Admin status changes, reassignment and rescheduling."""

    def test_status_machine_rejects_invalid_transition(self, admin, student, teacher, future_start):
        booking = _book(student, teacher, future_start)

        with pytest.raises(AppError) as exc:
            BookingService.admin_update_status(booking, "completed", admin)
        assert exc.value.status_code == 400

    def test_upcoming_keeps_first_approval_stamp(self, admin, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        BookingService.approve_booking(booking, teacher)
        first_stamp = booking.approved_at

        BookingService.admin_update_status(booking, "upcoming", admin)

        assert booking.status == "upcoming"
        assert booking.approved_at == first_stamp
        assert booking.approved_by_id == teacher.id

    def test_admin_completion_credits_teacher_once(self, admin, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        BookingService.approve_booking(booking, teacher)
        BookingService.admin_update_status(booking, "upcoming", admin)

        BookingService.admin_update_status(booking, "completed", admin)

        wallet = TeacherWallet.query.filter_by(user_id=teacher.id).first()
        assert wallet.balance == Decimal("4500.00")
        assert booking.teaching_session.status == "completed"
        assert booking.teaching_session.earnings_credited_at is not None

    def test_admin_cancel_via_status_refunds(self, admin, student, teacher, future_start):
        booking = _book(student, teacher, future_start)

        BookingService.admin_update_status(booking, "cancelled", admin, "Duplicate")

        assert booking.status == "cancelled"
        assert _balance(student) == Decimal("20000.00")

    def test_reassign_moves_session(self, admin, make_teacher, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        BookingService.approve_booking(booking, teacher)
        replacement = make_teacher()

        BookingService.reassign_booking(booking, replacement.id, admin, "Original teacher unavailable")

        assert booking.teacher_id == replacement.id
        assert booking.teaching_session.teacher_id == replacement.id
        assert booking.subject_id == subject_id_for(replacement)
        for user_id in (teacher.id, replacement.id, student.id):
            assert Notification.query.filter_by(user_id=user_id, type="booking_reassigned").count() == 1

    def test_reassign_requires_free_teacher(self, admin, make_teacher, make_user, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        replacement = make_teacher()
        busy_student = make_user("student")
        WalletService.fund_wallet(busy_student, "10000")
        _book(busy_student, replacement, future_start)

        with pytest.raises(AppError) as exc:
            BookingService.reassign_booking(booking, replacement.id, admin)
        assert exc.value.status_code == 409

    def test_reschedule_keeps_duration(self, admin, student, teacher, future_start):
        booking = _book(student, teacher, future_start, minutes=45)
        BookingService.approve_booking(booking, teacher)
        new_start = future_start + timedelta(days=1)

        BookingService.reschedule_booking(booking, new_start, admin, "Public holiday", notify=False)

        assert as_utc(booking.start_time) == new_start
        assert as_utc(booking.end_time) == new_start + timedelta(minutes=45)
        assert as_utc(booking.teaching_session.start_time) == new_start
        assert Notification.query.filter_by(type="booking_rescheduled").count() == 0


class TestSweepsAndStats:
    """Missed-booking sweep and dashboard counts."""

    def test_mark_missed_without_refund(self, student, teacher, future_start):
        booking = _book(student, teacher, future_start)
        BookingService.approve_booking(booking, teacher)

        count = BookingService.mark_missed_bookings(now=future_start + timedelta(hours=2))

        assert count == 1
        assert booking.status == "missed"
        assert booking.teaching_session.status == "missed"
        assert _balance(student) == Decimal("15000.00")

    def test_mark_missed_ignores_future_and_pending(self, student, teacher, future_start):
        pending = _book(student, teacher, future_start)
        approved = _book(student, teacher, future_start + timedelta(days=1))
        BookingService.approve_booking(approved, teacher)

        assert BookingService.mark_missed_bookings(now=future_start + timedelta(hours=2)) == 0
        assert pending.status == "pending"
        assert approved.status == "approved"

    def test_booking_stats(self, student, teacher, future_start):
        first = _book(student, teacher, future_start)
        _book(student, teacher, future_start + timedelta(hours=2))
        BookingService.approve_booking(first, teacher)

        stats = BookingService.booking_stats()

        assert stats["total"] == 2
        assert stats["by_status"]["approved"] == 1
        assert stats["by_status"]["pending"] == 1
        assert stats["today"] == 2
        assert stats["this_month"] == 2

    def test_reference_falls_back_when_short_codes_collide(self, monkeypatch, student, teacher, future_start):
        monkeypatch.setattr("app.utils.secrets.randbelow", lambda bound: 7)
        first = _book(student, teacher, future_start)
        assert re.fullmatch(r"BK-\d{6}007", first.booking_uuid)

        second = _book(student, teacher, future_start + timedelta(hours=2))

        assert second.booking_uuid != first.booking_uuid
        assert re.fullmatch(r"BK-\d{6}-[0-9A-F]{12}", second.booking_uuid)
