"""Shared fixtures: a fresh in-memory app per test plus user factories."""
from datetime import timedelta
from decimal import Decimal

import pytest

from app import create_app
from app.extensions import db
from app.models import TeacherProfile
from app.services import AuthService, TeacherService, WalletService
from app.utils import utcnow

PASSWORD = "s3cret-pass"


@pytest.fixture
def app():
    app = create_app("testing")
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role="student", guardian_id=None, name=None):
        counter["n"] += 1
        return AuthService.register_user(
            full_name=name or f"{role.title()} {counter['n']}",
            email=f"{role}{counter['n']}@example.com",
            password=PASSWORD,
            role=role,
            guardian_id=guardian_id,
        )

    return _make


@pytest.fixture
def admin(app):
    return AuthService.create_admin("Site Admin", "admin@example.com", PASSWORD)


@pytest.fixture
def make_teacher(make_user):
    def _make(rate="5000.00", subject="Quran Recitation"):
        teacher = make_user("teacher")
        TeacherService.update_profile(teacher, {"hourly_rate_ngn": rate, "hourly_rate_usd": "4.00"})
        TeacherService.add_subject(teacher, subject)
        profile = TeacherProfile.query.filter_by(user_id=teacher.id).first()
        profile.verification_status = "verified"
        profile.verified_at = utcnow()
        db.session.commit()
        return teacher

    return _make


@pytest.fixture
def teacher(make_teacher):
    return make_teacher()


@pytest.fixture
def student(make_user):
    user = make_user("student")
    WalletService.fund_wallet(user, Decimal("20000.00"), reference="seed")
    return user


@pytest.fixture
def future_start():
    start = utcnow() + timedelta(days=2)
    return start.replace(hour=10, minute=0, second=0, microsecond=0)


def subject_id_for(teacher):
    return TeacherProfile.query.filter_by(user_id=teacher.id).first().subjects.first().id
