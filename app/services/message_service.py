from sqlalchemy import func

from app.errors import AppError
from app.extensions import db
from app.models import Booking, Conversation, ConversationParticipant, Message, User
from app.services.notification_service import NotificationService
from app.utils import as_utc, utcnow

MAX_MESSAGE_LENGTH = 5000
STUDENT_TEACHER_STATUSES = ("pending", "approved", "upcoming", "in_progress", "completed")
GUARDIAN_TEACHER_STATUSES = ("approved", "upcoming", "completed")


class MessageService:
    @staticmethod
    def _shares_booking(student_ids, teacher_id, statuses):
        return (
            Booking.query.filter(Booking.student_id.in_(student_ids))
            .filter(Booking.teacher_id == teacher_id)
            .filter(Booking.status.in_(statuses))
            .first()
            is not None
        )

    @staticmethod
    def can_user_message(sender, recipient):
        if sender.id == recipient.id or not recipient.is_active_user:
            return False
        if sender.is_admin or recipient.is_admin:
            return sender.is_admin
        pair = {sender.role, recipient.role}
        if pair == {"student", "teacher"}:
            student, teacher = (sender, recipient) if sender.role == "student" else (recipient, sender)
            return MessageService._shares_booking([student.id], teacher.id, STUDENT_TEACHER_STATUSES)
        if pair == {"guardian", "teacher"}:
            guardian, teacher = (sender, recipient) if sender.role == "guardian" else (recipient, sender)
            child_ids = [row.id for row in guardian.children.with_entities(User.id).all()]
            if not child_ids:
                return False
            return MessageService._shares_booking(child_ids, teacher.id, GUARDIAN_TEACHER_STATUSES)
        return False

    @staticmethod
    def _find_direct(user_a_id, user_b_id):
        mine = db.session.query(ConversationParticipant.conversation_id).filter(
            ConversationParticipant.user_id == user_a_id
        )
        return (
            Conversation.query.join(ConversationParticipant)
            .filter(Conversation.type == "direct")
            .filter(Conversation.id.in_(mine))
            .filter(ConversationParticipant.user_id == user_b_id)
            .first()
        )

    @staticmethod
    def get_or_create_conversation(sender, recipient_id):
        recipient = db.session.get(User, recipient_id)
        if not recipient:
            raise AppError("Recipient not found.", 404)
        existing = MessageService._find_direct(sender.id, recipient.id)
        if existing:
            return existing, False
        if not MessageService.can_user_message(sender, recipient):
            raise AppError("You are not allowed to message this user.", 403)

        conversation = Conversation(type="direct")
        conversation.participants = [
            ConversationParticipant(user_id=sender.id),
            ConversationParticipant(user_id=recipient.id),
        ]
        db.session.add(conversation)
        db.session.commit()
        return conversation, True

    @staticmethod
    def get_for_user(conversation_id, user):
        conversation = db.session.get(Conversation, conversation_id)
        if not conversation or user.id not in conversation.participant_ids:
            raise AppError("Conversation not found.", 404)
        return conversation

    @staticmethod
    def send_message(sender, conversation_id, body):
        conversation = MessageService.get_for_user(conversation_id, sender)
        text = (body or "").strip()
        if not text:
            raise AppError("Message is required.", 400)
        if len(text) > MAX_MESSAGE_LENGTH:
            raise AppError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters.", 400)

        now = utcnow()
        message = Message(conversation_id=conversation.id, sender_id=sender.id, body=text)
        db.session.add(message)
        conversation.last_message_at = now
        for participant in conversation.participants:
            if participant.user_id == sender.id:
                participant.last_read_at = now
                continue
            NotificationService.push(
                participant.user_id,
                "New message",
                f"{sender.full_name}: {text[:80]}",
                type="new_message",
                related=("conversation", conversation.id),
            )
        db.session.commit()
        return message

    @staticmethod
    def _unread(conversation_id, user_id, last_read_at):
        query = Message.query.filter(Message.conversation_id == conversation_id, Message.sender_id != user_id)
        if last_read_at:
            query = query.filter(Message.created_at > last_read_at)
        return query.count()

    @staticmethod
    def list_conversations(user):
        rows = (
            ConversationParticipant.query.filter_by(user_id=user.id)
            .join(Conversation)
            .order_by(func.coalesce(Conversation.last_message_at, Conversation.created_at).desc())
            .all()
        )
        results = []
        for row in rows:
            conversation = row.conversation
            others = [p.user for p in conversation.participants if p.user_id != user.id]
            last = conversation.messages.order_by(Message.created_at.desc(), Message.id.desc()).first()
            results.append(
                {
                    "id": conversation.id,
                    "participants": [{"id": other.id, "full_name": other.full_name, "role": other.role} for other in others],
                    "last_message": last.to_dict() if last else None,
                    "last_message_at": as_utc(conversation.last_message_at).isoformat() if conversation.last_message_at else None,
                    "unread_count": MessageService._unread(conversation.id, user.id, row.last_read_at),
                }
            )
        return results

    @staticmethod
    def list_messages(conversation, user, limit=300):
        if user.id not in conversation.participant_ids:
            raise AppError("Conversation not found.", 404)
        return conversation.messages.order_by(Message.created_at.asc(), Message.id.asc()).limit(limit).all()

    @staticmethod
    def mark_conversation_read(conversation, user):
        participant = ConversationParticipant.query.filter_by(conversation_id=conversation.id, user_id=user.id).first()
        if not participant:
            raise AppError("Conversation not found.", 404)
        participant.last_read_at = utcnow()
        db.session.commit()
        return participant
