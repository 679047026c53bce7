from app.extensions import db
from app.models.base import PKType, TimestampMixin
from app.utils import as_utc


class Conversation(TimestampMixin, db.Model):
    __tablename__ = "conversations"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    type = db.Column(db.String(16), nullable=False, default="direct")
    last_message_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    participants = db.relationship(
        "ConversationParticipant", back_populates="conversation", cascade="all, delete-orphan"
    )
    messages = db.relationship(
        "Message", back_populates="conversation", lazy="dynamic", cascade="all, delete-orphan"
    )

    @property
    def participant_ids(self):
        return {row.user_id for row in self.participants}


class ConversationParticipant(TimestampMixin, db.Model):
    __tablename__ = "conversation_participants"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    conversation_id = db.Column(
        PKType, db.ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    last_read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    conversation = db.relationship("Conversation", back_populates="participants")
    user = db.relationship("User")

    __table_args__ = (
        db.UniqueConstraint("conversation_id", "user_id", name="uq_conversation_participant"),
    )


class Message(TimestampMixin, db.Model):
    __tablename__ = "messages"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    conversation_id = db.Column(
        PKType, db.ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    body = db.Column(db.Text, nullable=False)

    conversation = db.relationship("Conversation", back_populates="messages")
    sender = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "body": self.body,
            "created_at": as_utc(self.created_at).isoformat(),
        }
