from app.extensions import db
from app.models.base import PKType, TimestampMixin
from app.utils import as_utc


class TeachingSession(TimestampMixin, db.Model):
    __tablename__ = "teaching_sessions"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    session_uuid = db.Column(db.String(32), nullable=False, unique=True, index=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True)
    teacher_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = db.Column(PKType, db.ForeignKey("subjects.id", ondelete="SET NULL"), nullable=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(24), nullable=False, default="scheduled", index=True)
    meeting_link = db.Column(db.String(500), nullable=True)

    teacher_marked_present = db.Column(db.Boolean, nullable=False, default=False)
    student_marked_present = db.Column(db.Boolean, nullable=False, default=False)
    teacher_joined_at = db.Column(db.DateTime(timezone=True), nullable=True)
    teacher_left_at = db.Column(db.DateTime(timezone=True), nullable=True)
    student_joined_at = db.Column(db.DateTime(timezone=True), nullable=True)
    student_left_at = db.Column(db.DateTime(timezone=True), nullable=True)

    actual_duration_minutes = db.Column(db.Integer, nullable=True)
    completion_date = db.Column(db.DateTime(timezone=True), nullable=True)
    attendance_count = db.Column(db.SmallInteger, nullable=False, default=0)
    teacher_notes = db.Column(db.Text, nullable=True)
    teacher_rating = db.Column(db.SmallInteger, nullable=True)
    student_rating = db.Column(db.SmallInteger, nullable=True)
    earnings_credited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reminder_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    booking = db.relationship("Booking", back_populates="teaching_session")
    teacher = db.relationship("User", foreign_keys=[teacher_id])
    student = db.relationship("User", foreign_keys=[student_id])

    def calculate_duration(self):
        if self.teacher_joined_at and self.teacher_left_at:
            delta = as_utc(self.teacher_left_at) - as_utc(self.teacher_joined_at)
            return max(int(delta.total_seconds() // 60), 0)
        return 0

    def calculate_attendance_count(self):
        return int(bool(self.teacher_marked_present)) + int(bool(self.student_marked_present))

    @property
    def attendance_percentage(self):
        return round((self.attendance_count or 0) / 2 * 100, 2)

    def to_dict(self):
        return {
            "id": self.id,
            "session_uuid": self.session_uuid,
            "booking_id": self.booking_id,
            "teacher_id": self.teacher_id,
            "student_id": self.student_id,
            "start_time": as_utc(self.start_time).isoformat(),
            "end_time": as_utc(self.end_time).isoformat(),
            "status": self.status,
            "meeting_link": self.meeting_link,
            "teacher_marked_present": self.teacher_marked_present,
            "student_marked_present": self.student_marked_present,
            "actual_duration_minutes": self.actual_duration_minutes,
            "attendance_count": self.attendance_count,
            "attendance_percentage": self.attendance_percentage,
            "teacher_rating": self.teacher_rating,
            "student_rating": self.student_rating,
            "completion_date": as_utc(self.completion_date).isoformat() if self.completion_date else None,
        }
