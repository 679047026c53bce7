from app.extensions import db
from app.models.base import MoneyType, PKType, TimestampMixin
from app.utils import as_utc

ACTIVE_BOOKING_STATUSES = ("pending", "approved", "upcoming", "in_progress")
TERMINAL_BOOKING_STATUSES = ("completed", "rejected", "cancelled", "missed")


class Booking(TimestampMixin, db.Model):
    __tablename__ = "bookings"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    booking_uuid = db.Column(db.String(32), nullable=False, unique=True, index=True)
    student_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    teacher_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = db.Column(PKType, db.ForeignKey("subjects.id", ondelete="SET NULL"), nullable=True)
    created_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text, nullable=True)

    hourly_rate_ngn = db.Column(MoneyType, nullable=False)
    hourly_rate_usd = db.Column(MoneyType, nullable=True)
    rate_currency = db.Column(db.String(3), nullable=False, default="NGN")
    exchange_rate_used = db.Column(db.Numeric(14, 6), nullable=True)
    amount_ngn = db.Column(MoneyType, nullable=False, default=0)
    paid_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    approved_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    student = db.relationship("User", back_populates="bookings", foreign_keys=[student_id])
    teacher = db.relationship("User", back_populates="teacher_bookings", foreign_keys=[teacher_id])
    subject = db.relationship("Subject")
    teaching_session = db.relationship("TeachingSession", back_populates="booking", uselist=False)
    history = db.relationship(
        "BookingHistory", back_populates="booking", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("ix_bookings_teacher_status", "teacher_id", "status"),
        db.Index("ix_bookings_student_status", "student_id", "status"),
        db.CheckConstraint("duration_minutes > 0", name="ck_booking_duration_positive"),
    )

    @property
    def starts_at(self):
        return as_utc(self.start_time)

    @property
    def ends_at(self):
        return as_utc(self.end_time)

    def to_dict(self):
        return {
            "id": self.id,
            "booking_uuid": self.booking_uuid,
            "student_id": self.student_id,
            "teacher_id": self.teacher_id,
            "subject_id": self.subject_id,
            "subject": self.subject.name if self.subject else None,
            "start_time": self.starts_at.isoformat(),
            "end_time": self.ends_at.isoformat(),
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "notes": self.notes,
            "amount_ngn": str(self.amount_ngn),
            "hourly_rate_ngn": str(self.hourly_rate_ngn),
            "approved_at": as_utc(self.approved_at).isoformat() if self.approved_at else None,
            "cancelled_at": as_utc(self.cancelled_at).isoformat() if self.cancelled_at else None,
            "session_id": self.teaching_session.id if self.teaching_session else None,
        }


class BookingHistory(TimestampMixin, db.Model):
    __tablename__ = "booking_history"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    action = db.Column(db.String(48), nullable=False)
    performed_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    booking = db.relationship("Booking", back_populates="history")


class BookingModification(TimestampMixin, db.Model):
    __tablename__ = "booking_modifications"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    teacher_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    new_teacher_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    new_subject_id = db.Column(PKType, db.ForeignKey("subjects.id", ondelete="SET NULL"), nullable=True)
    new_start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    new_end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    new_duration_minutes = db.Column(db.Integer, nullable=False)
    price_difference = db.Column(MoneyType, nullable=False, default=0)
    new_hourly_rate_ngn = db.Column(MoneyType, nullable=True)
    new_hourly_rate_usd = db.Column(MoneyType, nullable=True)
    new_rate_currency = db.Column(db.String(3), nullable=True)
    new_booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)

    reason = db.Column(db.Text, nullable=True)
    teacher_notes = db.Column(db.Text, nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    booking = db.relationship("Booking", foreign_keys=[booking_id])

    def to_dict(self):
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "type": self.type,
            "status": self.status,
            "teacher_id": self.teacher_id,
            "new_teacher_id": self.new_teacher_id,
            "new_start_time": as_utc(self.new_start_time).isoformat(),
            "new_end_time": as_utc(self.new_end_time).isoformat(),
            "price_difference": str(self.price_difference),
            "new_hourly_rate_ngn": str(self.new_hourly_rate_ngn) if self.new_hourly_rate_ngn is not None else None,
            "new_booking_id": self.new_booking_id,
            "reason": self.reason,
            "teacher_notes": self.teacher_notes,
            "expires_at": as_utc(self.expires_at).isoformat(),
        }
