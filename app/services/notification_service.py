from datetime import timedelta

from flask import current_app

from app.errors import AppError
from app.extensions import db
from app.models import Notification, TeachingSession, User
from app.utils import utcnow


class NotificationService:
    @staticmethod
    def push(user_id, title, message, type="general", related=None):
        related_type, related_id = related if related else (None, None)
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            related_type=related_type,
            related_id=related_id,
        )
        db.session.add(notification)
        db.session.flush()
        return notification

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    @staticmethod
    def latest_for_user(user_id, limit=10, unread_only=False):
        query = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            query = query.filter_by(is_read=False)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

    @staticmethod
    def mark_read(notification_id, user_id):
        notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if not notification:
            raise AppError("Notification not found.", 404)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            db.session.commit()
        return notification

    @staticmethod
    def mark_all_read(user_id):
        Notification.query.filter_by(user_id=user_id, is_read=False).update(
            {"is_read": True, "read_at": utcnow()}
        )
        db.session.commit()

    @staticmethod
    def broadcast(admin, role, title, message):
        title = (title or "").strip()
        message = (message or "").strip()
        if not title or not message:
            raise AppError("Title and message are required.", 400)
        query = User.query.filter_by(is_active_user=True)
        if role and role != "all":
            query = query.filter_by(role=role)
        recipients = [row.id for row in query.with_entities(User.id).all()]
        for user_id in recipients:
            NotificationService.push(user_id, title, message, type="announcement")
        db.session.commit()
        current_app.logger.info(
            "Broadcast sent by admin %s to role=%s recipients=%s", admin.id, role or "all", len(recipients)
        )
        return len(recipients)

    @staticmethod
    def send_session_reminders(now=None, lead_minutes=15):
        now = now or utcnow()
        window_end = now + timedelta(minutes=lead_minutes)
        sessions = (
            TeachingSession.query.filter(TeachingSession.status == "scheduled")
            .filter(TeachingSession.reminder_sent_at.is_(None))
            .filter(TeachingSession.start_time > now, TeachingSession.start_time <= window_end)
            .all()
        )
        for session in sessions:
            for user_id in (session.student_id, session.teacher_id):
                NotificationService.push(
                    user_id,
                    "Session starting soon",
                    f"Session {session.session_uuid} starts in less than {lead_minutes} minutes.",
                    type="session_starting_soon",
                    related=("teaching_session", session.id),
                )
            session.reminder_sent_at = now
        db.session.commit()
        return len(sessions)
