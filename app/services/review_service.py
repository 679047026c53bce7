from decimal import Decimal

from sqlalchemy import func

from app.errors import AppError
from app.extensions import db
from app.models import TeacherProfile, TeacherReview


class ReviewService:
    @staticmethod
    def upsert_review(booking, student, rating, comment=None):
        try:
            rating_int = int(rating)
        except (TypeError, ValueError) as exc:
            raise AppError("Rating must be an integer between 1 and 5.", 400) from exc

        if rating_int < 1 or rating_int > 5:
            raise AppError("Rating must be an integer between 1 and 5.", 400)
        if booking.student_id != student.id:
            raise AppError("Only the student of this booking can review it.", 403)
        if booking.status != "completed":
            raise AppError("Review unlocks after the session is completed.", 403)

        review = TeacherReview.query.filter_by(booking_id=booking.id).first()
        if review:
            review.rating = rating_int
            review.comment = (comment or "").strip() or None
        else:
            review = TeacherReview(
                booking_id=booking.id,
                teacher_id=booking.teacher_id,
                student_id=student.id,
                rating=rating_int,
                comment=(comment or "").strip() or None,
            )
            db.session.add(review)
        db.session.flush()

        avg_rating, rating_count = (
            db.session.query(func.avg(TeacherReview.rating), func.count(TeacherReview.id))
            .filter(TeacherReview.teacher_id == booking.teacher_id)
            .one()
        )
        profile = TeacherProfile.query.filter_by(user_id=booking.teacher_id).first()
        if profile:
            profile.rating_avg = Decimal(str(round(float(avg_rating or 0), 2)))
            profile.rating_count = int(rating_count or 0)

        db.session.commit()
        return review
