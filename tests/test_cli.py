"""Tests for the maintenance commands."""
from datetime import timedelta

from app.models import User
from app.services import BookingService
from app.utils import utcnow
from tests.conftest import subject_id_for


class TestCommands:
    def test_create_admin(self, app):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["create-admin", "--email", "ops@example.com", "--password", "s3cret-pass"])

        assert result.exit_code == 0, result.output
        assert "Admin ops@example.com created" in result.output
        assert User.query.filter_by(email="ops@example.com", role="admin").count() == 1

    def test_create_admin_duplicate(self, app, admin):
        result = app.test_cli_runner().invoke(
            args=["create-admin", "--email", "admin@example.com", "--password", "s3cret-pass"]
        )

        assert result.exit_code != 0
        assert "Email already registered." in result.output

    def test_sweeps_report_counts(self, app):
        runner = app.test_cli_runner()

        assert runner.invoke(args=["process-auto-payouts"]).output.strip() == "processed=0 failed=0"
        assert runner.invoke(args=["expire-modifications"]).output.strip() == "expired=0"
        assert runner.invoke(args=["mark-missed-bookings"]).output.strip() == "missed=0"

    def test_send_session_reminders(self, app, student, teacher):
        start = (utcnow() + timedelta(minutes=20)).replace(microsecond=0)
        booking = BookingService.create_booking(student, teacher.id, subject_id_for(teacher), start, 30)
        BookingService.approve_booking(booking, teacher)
        runner = app.test_cli_runner()

        assert runner.invoke(args=["send-session-reminders"]).output.strip() == "reminded=0"
        result = runner.invoke(args=["send-session-reminders", "--lead-minutes", "30"])

        assert result.output.strip() == "reminded=1"
