from flask_login import UserMixin

from app.extensions import db
from app.models.base import PKType, TimestampMixin

ROLES = ("student", "guardian", "teacher", "admin")


class User(UserMixin, TimestampMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    full_name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(20), nullable=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(24), nullable=False, index=True)
    guardian_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active_user = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    guardian = db.relationship("User", remote_side=[id], back_populates="children")
    children = db.relationship("User", back_populates="guardian", lazy="dynamic")
    teacher_profile = db.relationship("TeacherProfile", back_populates="user", uselist=False)
    student_wallet = db.relationship("StudentWallet", back_populates="user", uselist=False)
    teacher_wallet = db.relationship("TeacherWallet", back_populates="user", uselist=False)
    notifications = db.relationship("Notification", back_populates="user", lazy="dynamic")
    payment_methods = db.relationship("PaymentMethod", back_populates="user", lazy="dynamic")
    bookings = db.relationship(
        "Booking", back_populates="student", lazy="dynamic", foreign_keys="Booking.student_id"
    )
    teacher_bookings = db.relationship(
        "Booking", back_populates="teacher", lazy="dynamic", foreign_keys="Booking.teacher_id"
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "guardian_id": self.guardian_id,
        }
