"""Maintenance commands, run from cron or by hand.

Usage:
  flask --app app create-admin --email admin@example.com
  flask --app app process-auto-payouts
"""
import click
from flask import current_app

from app.errors import AppError
from app.services import (
    AuthService,
    BookingService,
    ModificationService,
    NotificationService,
    PayoutService,
)


def register_cli(app):
    @app.cli.command("create-admin")
    @click.option("--email", required=True)
    @click.option("--name", default="Administrator")
    @click.password_option()
    def create_admin(email, name, password):
        """Create an administrator account."""
        try:
            user = AuthService.create_admin(name, email, password)
        except AppError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"Admin {user.email} created (id={user.id}).")

    @app.cli.command("process-auto-payouts")
    def process_auto_payouts():
        """Open payout requests for teachers above the auto-payout threshold."""
        result = PayoutService.process_auto_payouts()
        click.echo(f"processed={result['processed']} failed={result['failed']}")

    @app.cli.command("expire-modifications")
    def expire_modifications():
        count = ModificationService.expire_old_modifications()
        click.echo(f"expired={count}")

    @app.cli.command("mark-missed-bookings")
    def mark_missed_bookings():
        count = BookingService.mark_missed_bookings()
        click.echo(f"missed={count}")

    @app.cli.command("send-session-reminders")
    @click.option("--lead-minutes", default=15, show_default=True, type=int)
    def send_session_reminders(lead_minutes):
        count = NotificationService.send_session_reminders(lead_minutes=lead_minutes)
        current_app.logger.info("Session reminders sent: %s", count)
        click.echo(f"reminded={count}")
