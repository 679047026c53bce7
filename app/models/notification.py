from app.extensions import db
from app.models.base import PKType, TimestampMixin
from app.utils import as_utc


class Notification(TimestampMixin, db.Model):
    __tablename__ = "notifications"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    user_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(48), nullable=False, default="general", index=True)
    title = db.Column(db.String(180), nullable=False)
    message = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    related_type = db.Column(db.String(48), nullable=True)
    related_id = db.Column(PKType, nullable=True)

    user = db.relationship("User", back_populates="notifications")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "related_type": self.related_type,
            "related_id": self.related_id,
            "created_at": as_utc(self.created_at).isoformat(),
        }
