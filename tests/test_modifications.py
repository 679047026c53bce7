"""Tests for student reschedule and rebook requests."""
from datetime import timedelta
from decimal import Decimal

import pytest

from app.errors import AppError
from app.extensions import db
from app.models import Booking, Notification, StudentWallet
from app.services import BookingService, ModificationService, TeacherService
from app.utils import as_utc, utcnow
from tests.conftest import subject_id_for


@pytest.fixture
def booking(student, teacher, future_start):
    booking = BookingService.create_booking(student, teacher.id, subject_id_for(teacher), future_start, 60)
    BookingService.approve_booking(booking, teacher)
    return booking


def _balance(user):
    return StudentWallet.query.filter_by(user_id=user.id).first().balance


class TestReschedule:
    """Reschedule requests handled by the booked teacher."""

    def test_approve_moves_booking_and_session(self, booking, student, teacher, future_start):
        new_start = future_start + timedelta(days=1)
        modification = ModificationService.create_reschedule_request(booking, student, new_start, "Travelling")

        assert modification.status == "pending"
        assert as_utc(modification.expires_at) > utcnow() + timedelta(days=2, hours=23)
        assert Notification.query.filter_by(user_id=teacher.id, type="modification_request").count() == 1

        ModificationService.approve_modification(modification, teacher, "See you then")

        assert modification.status == "completed"
        assert as_utc(booking.start_time) == new_start
        assert as_utc(booking.teaching_session.start_time) == new_start
        assert as_utc(booking.teaching_session.end_time) == new_start + timedelta(minutes=60)
        assert _balance(student) == Decimal("15000.00")

    def test_only_one_open_request(self, booking, student, future_start):
        ModificationService.create_reschedule_request(booking, student, future_start + timedelta(days=1))

        with pytest.raises(AppError) as exc:
            ModificationService.create_reschedule_request(booking, student, future_start + timedelta(days=2))
        assert exc.value.status_code == 409

    def test_other_student_cannot_request(self, booking, make_user, future_start):
        with pytest.raises(AppError) as exc:
            ModificationService.create_reschedule_request(booking, make_user("student"), future_start + timedelta(days=1))
        assert exc.value.status_code == 403

    def test_past_start_is_rejected(self, booking, student):
        with pytest.raises(AppError) as exc:
            ModificationService.create_reschedule_request(booking, student, utcnow() - timedelta(hours=1))
        assert exc.value.status_code == 400

    def test_reject_leaves_booking_untouched(self, booking, student, teacher, future_start):
        modification = ModificationService.create_reschedule_request(booking, student, future_start + timedelta(days=1))

        ModificationService.reject_modification(modification, teacher, "Fully booked")

        assert modification.status == "rejected"
        assert as_utc(booking.start_time) == future_start
        assert Notification.query.filter_by(user_id=student.id, type="modification_rejected").count() == 1

    def test_student_cancels_request(self, booking, student, future_start):
        modification = ModificationService.create_reschedule_request(booking, student, future_start + timedelta(days=1))

        ModificationService.cancel_modification(modification, student)

        assert modification.status == "cancelled"
        with pytest.raises(AppError) as exc:
            ModificationService.cancel_modification(modification, student)
        assert exc.value.status_code == 409


class TestExpiry:
    """Pending requests lapse after their window."""

    def test_sweep_expires_stale_requests(self, booking, student, future_start):
        modification = ModificationService.create_reschedule_request(booking, student, future_start + timedelta(days=1))

        assert ModificationService.expire_old_modifications(now=utcnow() + timedelta(days=2)) == 0
        assert ModificationService.expire_old_modifications(now=utcnow() + timedelta(days=4)) == 1

        assert modification.status == "expired"
        assert Notification.query.filter_by(user_id=student.id, type="modification_expired").count() == 1

    def test_approving_expired_request_marks_it(self, booking, student, teacher, future_start):
        modification = ModificationService.create_reschedule_request(booking, student, future_start + timedelta(days=1))
        modification.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        with pytest.raises(AppError) as exc:
            ModificationService.approve_modification(modification, teacher)
        assert exc.value.status_code == 409
        assert modification.status == "expired"
        assert as_utc(booking.start_time) == future_start


class TestRebook:
    """Moving a booking to another teacher."""

    def test_rebook_with_pricier_teacher(self, booking, student, teacher, make_teacher, future_start):
        new_teacher = make_teacher(rate="6000.00", subject="Tajweed")
        new_start = future_start + timedelta(days=1)
        modification = ModificationService.create_rebook_request(
            booking, student, new_teacher.id, subject_id_for(new_teacher), new_start, "Prefer Tajweed focus"
        )

        assert modification.price_difference == Decimal("1000.00")
        assert modification.teacher_id == new_teacher.id
        assert Notification.query.filter_by(user_id=teacher.id, type="modification_request").count() == 1

        with pytest.raises(AppError) as exc:
            ModificationService.approve_modification(modification, teacher)
        assert exc.value.status_code == 403

        ModificationService.approve_modification(modification, new_teacher)

        assert booking.status == "cancelled"
        assert booking.teaching_session.status == "cancelled"
        new_booking = db.session.get(Booking, modification.new_booking_id)
        assert new_booking.status == "approved"
        assert new_booking.teacher_id == new_teacher.id
        assert new_booking.amount_ngn == Decimal("6000.00")
        assert new_booking.teaching_session is not None
        assert _balance(student) == Decimal("14000.00")

    def test_rebook_with_cheaper_teacher_refunds_difference(self, booking, student, make_teacher, future_start):
        new_teacher = make_teacher(rate="3000.00", subject="Arabic")
        modification = ModificationService.create_rebook_request(
            booking, student, new_teacher.id, subject_id_for(new_teacher), future_start + timedelta(days=1)
        )

        ModificationService.approve_modification(modification, new_teacher)

        assert modification.price_difference == Decimal("-2000.00")
        assert _balance(student) == Decimal("17000.00")

    def test_rebook_keeps_rate_quoted_at_request(self, booking, student, make_teacher, future_start):
        new_teacher = make_teacher(rate="6000.00", subject="Tajweed")
        modification = ModificationService.create_rebook_request(
            booking, student, new_teacher.id, subject_id_for(new_teacher), future_start + timedelta(days=1)
        )
        TeacherService.update_profile(new_teacher, {"hourly_rate_ngn": "8000"})

        ModificationService.approve_modification(modification, new_teacher)

        new_booking = db.session.get(Booking, modification.new_booking_id)
        assert new_booking.hourly_rate_ngn == Decimal("6000.00")
        assert new_booking.amount_ngn == Decimal("6000.00")
        assert _balance(student) == Decimal("14000.00")

    def test_rebook_to_unverified_teacher(self, booking, student, make_user, future_start):
        with pytest.raises(AppError) as exc:
            ModificationService.create_rebook_request(
                booking, student, make_user("teacher").id, None, future_start + timedelta(days=1)
            )
        assert exc.value.status_code == 409

    def test_cancelled_booking_cannot_be_modified(self, booking, student, future_start):
        BookingService.cancel_booking(booking, student, "Change of plans")

        with pytest.raises(AppError) as exc:
            ModificationService.create_reschedule_request(booking, student, future_start + timedelta(days=1))
        assert exc.value.status_code == 409


class TestListing:
    def test_each_side_sees_own_requests(self, booking, student, teacher, make_user, future_start):
        modification = ModificationService.create_reschedule_request(booking, student, future_start + timedelta(days=1))

        assert [row.id for row in ModificationService.list_for_user(student)] == [modification.id]
        assert [row.id for row in ModificationService.list_for_user(teacher, status="pending")] == [modification.id]
        assert ModificationService.list_for_user(make_user("student")) == []
