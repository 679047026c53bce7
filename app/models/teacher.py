from app.extensions import db
from app.models.base import MoneyType, PKType, TimestampMixin


class TeacherProfile(TimestampMixin, db.Model):
    __tablename__ = "teacher_profiles"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    user_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    bio = db.Column(db.Text, nullable=True)
    experience_years = db.Column(db.Integer, nullable=False, default=0)
    hourly_rate_ngn = db.Column(MoneyType, nullable=True)
    hourly_rate_usd = db.Column(MoneyType, nullable=True)
    preferred_currency = db.Column(db.String(3), nullable=False, default="NGN")
    verification_status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    verification_notes = db.Column(db.Text, nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    holiday_mode = db.Column(db.Boolean, nullable=False, default=False)
    rating_avg = db.Column(db.Numeric(3, 2), nullable=False, default=0)
    rating_count = db.Column(db.Integer, nullable=False, default=0)

    user = db.relationship("User", back_populates="teacher_profile")
    subjects = db.relationship("Subject", back_populates="teacher_profile", lazy="dynamic", cascade="all, delete-orphan")

    @property
    def is_verified(self):
        return self.verification_status == "verified"


class Subject(TimestampMixin, db.Model):
    __tablename__ = "subjects"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    teacher_profile_id = db.Column(
        PKType, db.ForeignKey("teacher_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(120), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    teacher_profile = db.relationship("TeacherProfile", back_populates="subjects")

    __table_args__ = (
        db.UniqueConstraint("teacher_profile_id", "name", name="uq_subject_teacher_name"),
    )


class TeacherAvailability(TimestampMixin, db.Model):
    __tablename__ = "teacher_availabilities"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    teacher_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = db.Column(db.SmallInteger, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.Index("ix_availability_teacher_day", "teacher_id", "day_of_week"),
        db.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_day_range"),
    )


class TeacherDocument(TimestampMixin, db.Model):
    __tablename__ = "teacher_documents"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    teacher_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type = db.Column(db.String(24), nullable=False)
    file_path = db.Column(db.String(500), nullable=False)
    original_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    reviewed_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
