from datetime import datetime, time, timedelta, timezone

from sqlalchemy import and_
from sqlalchemy.orm import joinedload

from app.errors import AppError
from app.extensions import db
from app.models import Booking, Subject, TeacherAvailability, TeacherProfile, User
from app.models.booking import ACTIVE_BOOKING_STATUSES
from app.services.currency_service import SUPPORTED_CURRENCIES
from app.utils import as_utc, to_money


class TeacherService:
    PROFILE_FIELDS = {"bio", "experience_years", "hourly_rate_ngn", "hourly_rate_usd", "preferred_currency", "holiday_mode"}

    @staticmethod
    def get_profile(teacher_id):
        profile = (
            TeacherProfile.query.options(joinedload(TeacherProfile.user))
            .filter_by(user_id=teacher_id)
            .first()
        )
        if not profile:
            raise AppError("Teacher not found.", 404)
        return profile

    @staticmethod
    def update_profile(teacher, payload):
        profile = TeacherService.get_profile(teacher.id)
        unknown = set(payload) - TeacherService.PROFILE_FIELDS
        if unknown:
            raise AppError(f"Unknown profile fields: {', '.join(sorted(unknown))}.", 400)

        if "bio" in payload:
            profile.bio = (payload.get("bio") or "").strip() or None
        if "experience_years" in payload:
            try:
                years = int(payload["experience_years"])
                if years < 0:
                    raise ValueError
            except (TypeError, ValueError) as exc:
                raise AppError("Experience must be a non-negative integer.", 400) from exc
            profile.experience_years = years
        if "hourly_rate_ngn" in payload:
            profile.hourly_rate_ngn = to_money(payload["hourly_rate_ngn"], "Hourly rate (NGN)")
        if "hourly_rate_usd" in payload:
            profile.hourly_rate_usd = to_money(payload["hourly_rate_usd"], "Hourly rate (USD)")
        if "preferred_currency" in payload:
            currency = (payload.get("preferred_currency") or "").strip().upper()
            if currency not in SUPPORTED_CURRENCIES:
                raise AppError("Preferred currency must be NGN or USD.", 400)
            profile.preferred_currency = currency
        if "holiday_mode" in payload:
            profile.holiday_mode = bool(payload["holiday_mode"])

        db.session.commit()
        return profile

    @staticmethod
    def add_subject(teacher, name):
        profile = TeacherService.get_profile(teacher.id)
        clean = (name or "").strip()
        if not clean:
            raise AppError("Subject name is required.", 400)
        existing = profile.subjects.filter(Subject.name == clean).first()
        if existing:
            if existing.is_active:
                raise AppError("Subject already added.", 409)
            existing.is_active = True
            db.session.commit()
            return existing
        subject = Subject(teacher_profile_id=profile.id, name=clean, is_active=True)
        db.session.add(subject)
        db.session.commit()
        return subject

    @staticmethod
    def _parse_clock(raw, label):
        try:
            return time.fromisoformat(str(raw))
        except ValueError as exc:
            raise AppError(f"Invalid {label}. Use HH:MM.", 400) from exc

    @staticmethod
    def set_availability(teacher, windows):
        if not isinstance(windows, list):
            raise AppError("Availability must be a list of windows.", 400)

        parsed = []
        for window in windows:
            try:
                day = int(window.get("day_of_week"))
            except (AttributeError, TypeError, ValueError) as exc:
                raise AppError("Each window needs a day_of_week between 0 and 6.", 400) from exc
            if not 0 <= day <= 6:
                raise AppError("Each window needs a day_of_week between 0 and 6.", 400)
            start = TeacherService._parse_clock(window.get("start_time"), "start time")
            end = TeacherService._parse_clock(window.get("end_time"), "end time")
            if end <= start:
                raise AppError("Availability end time must be after start time.", 400)
            parsed.append((day, start, end, bool(window.get("is_active", True))))

        by_day = {}
        for day, start, end, _active in parsed:
            by_day.setdefault(day, []).append((start, end))
        for day_windows in by_day.values():
            day_windows.sort()
            for (_s1, e1), (s2, _e2) in zip(day_windows, day_windows[1:]):
                if s2 < e1:
                    raise AppError("Availability windows overlap.", 400)

        TeacherAvailability.query.filter_by(teacher_id=teacher.id).delete()
        rows = [
            TeacherAvailability(teacher_id=teacher.id, day_of_week=day, start_time=start, end_time=end, is_active=active)
            for day, start, end, active in parsed
        ]
        db.session.add_all(rows)
        db.session.commit()
        return rows

    @staticmethod
    def list_teachers(page=1, per_page=12, subject=None, verified_only=True, max_rate_ngn=None):
        query = (
            TeacherProfile.query.options(joinedload(TeacherProfile.user))
            .join(User, User.id == TeacherProfile.user_id)
            .filter(User.is_active_user.is_(True))
        )
        if verified_only:
            query = query.filter(TeacherProfile.verification_status == "verified")
        if subject:
            query = query.filter(
                TeacherProfile.subjects.any(
                    and_(Subject.name.ilike(f"%{subject.strip()}%"), Subject.is_active.is_(True))
                )
            )
        if max_rate_ngn is not None:
            query = query.filter(TeacherProfile.hourly_rate_ngn <= to_money(max_rate_ngn, "Maximum rate"))
        query = query.order_by(TeacherProfile.rating_avg.desc(), TeacherProfile.id.asc())
        return query.paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def available_slots(teacher_id, day):
        """Free intervals on ``day`` (a date, UTC) as (start, end) datetimes."""
        TeacherService.get_profile(teacher_id)
        windows = (
            TeacherAvailability.query.filter_by(teacher_id=teacher_id, day_of_week=day.weekday(), is_active=True)
            .order_by(TeacherAvailability.start_time.asc())
            .all()
        )
        day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        day_end = day_start + timedelta(days=1)
        booked = [
            (as_utc(row.start_time), as_utc(row.end_time))
            for row in Booking.query.filter(Booking.teacher_id == teacher_id)
            .filter(Booking.status.in_(ACTIVE_BOOKING_STATUSES))
            .filter(Booking.start_time < day_end, Booking.end_time > day_start)
            .order_by(Booking.start_time.asc())
            .all()
        ]

        slots = []
        for window in windows:
            cursor = datetime.combine(day, window.start_time, tzinfo=timezone.utc)
            window_end = datetime.combine(day, window.end_time, tzinfo=timezone.utc)
            for busy_start, busy_end in booked:
                if busy_end <= cursor or busy_start >= window_end:
                    continue
                if busy_start > cursor:
                    slots.append((cursor, busy_start))
                cursor = max(cursor, busy_end)
            if cursor < window_end:
                slots.append((cursor, window_end))
        return slots

    @staticmethod
    def profile_dict(profile):
        return {
            "teacher_id": profile.user_id,
            "full_name": profile.user.full_name,
            "bio": profile.bio,
            "experience_years": profile.experience_years,
            "hourly_rate_ngn": str(profile.hourly_rate_ngn) if profile.hourly_rate_ngn is not None else None,
            "hourly_rate_usd": str(profile.hourly_rate_usd) if profile.hourly_rate_usd is not None else None,
            "preferred_currency": profile.preferred_currency,
            "verification_status": profile.verification_status,
            "holiday_mode": profile.holiday_mode,
            "rating_avg": str(profile.rating_avg),
            "rating_count": profile.rating_count,
            "subjects": [
                {"id": row.id, "name": row.name} for row in profile.subjects.filter_by(is_active=True).all()
            ],
        }
