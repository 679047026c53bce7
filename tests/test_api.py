"""End-to-end checks of the JSON API.

Requests here run without an outer app context so each one gets its own
context and login state, the way a deployed server handles them.
"""
from datetime import timedelta

import pytest

from app import create_app
from app.extensions import db
from app.models import TeacherProfile, User
from app.services import AuthService, WalletService
from app.utils import utcnow
from tests.conftest import PASSWORD


@pytest.fixture
def app():
    app = create_app("testing")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


def _register(app, role, email, full_name="Test User"):
    client = app.test_client()
    response = client.post(
        "/api/v1/auth/register",
        json={"full_name": full_name, "email": email, "password": PASSWORD, "role": role},
    )
    assert response.status_code == 201, response.get_json()
    return client, response.get_json()


@pytest.fixture
def admin_client(app):
    with app.app_context():
        AuthService.create_admin("Site Admin", "admin@example.com", PASSWORD)
    client = app.test_client()
    response = client.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": PASSWORD})
    assert response.status_code == 200
    return client


@pytest.fixture
def verified_teacher(app):
    client, user = _register(app, "teacher", "ustadh@example.com", "Ustadh Musa")
    assert client.patch("/api/v1/teachers/me", json={"hourly_rate_ngn": "4000"}).status_code == 200
    subject = client.post("/api/v1/teachers/me/subjects", json={"name": "Tajweed"}).get_json()
    with app.app_context():
        profile = TeacherProfile.query.filter_by(user_id=user["id"]).one()
        profile.verification_status = "verified"
        profile.verified_at = utcnow()
        db.session.commit()
    return client, user, subject


class TestAuthEndpoints:
    """Registration, login and the current-user payload."""

    def test_register_logs_in_and_exposes_wallet(self, app):
        client, user = _register(app, "student", "Amina@Example.com", "Amina Yusuf")

        assert user["email"] == "amina@example.com"
        assert user["role"] == "student"
        me = client.get("/api/v1/auth/me").get_json()
        assert me["id"] == user["id"]
        assert me["wallet"]["balance"] == "0.00"
        assert me["unread_notifications"] == 0

    def test_duplicate_email(self, app):
        _register(app, "student", "dup@example.com")

        response = app.test_client().post(
            "/api/v1/auth/register",
            json={"full_name": "Again", "email": "dup@example.com", "password": PASSWORD, "role": "student"},
        )

        assert response.status_code == 409
        assert response.get_json() == {"error": "Email already registered."}

    def test_bad_login(self, app):
        _register(app, "student", "learner@example.com")

        response = app.test_client().post(
            "/api/v1/auth/login", json={"email": "learner@example.com", "password": "wrong-password"}
        )

        assert response.status_code == 401
        assert response.get_json() == {"error": "Invalid credentials."}

    def test_unauthenticated_request(self, app):
        response = app.test_client().get("/api/v1/auth/me")

        assert response.status_code == 401
        assert response.get_json() == {"error": "Authentication required"}

    def test_logout(self, app):
        client, _ = _register(app, "guardian", "parent@example.com")

        assert client.post("/api/v1/auth/logout").status_code == 200
        assert client.get("/api/v1/auth/me").status_code == 401


class TestRoleChecks:
    def test_student_cannot_reach_admin(self, app):
        client, _ = _register(app, "student", "curious@example.com")

        response = client.get("/api/v1/admin/settings")

        assert response.status_code == 403
        assert response.get_json() == {"error": "Forbidden"}

    def test_teacher_cannot_fund_wallet(self, verified_teacher):
        client, _, _ = verified_teacher

        assert client.post("/api/v1/wallet/fund", json={"amount": "100"}).status_code == 403


class TestBookingFlow:
    """A student books, the teacher approves, both see the result."""

    def test_book_and_approve(self, app, verified_teacher):
        teacher_client, teacher, subject = verified_teacher
        student_client, student = _register(app, "student", "learner@example.com", "Bilal Ade")

        funded = student_client.post("/api/v1/wallet/fund", json={"amount": "10000", "reference": "PSK-1"})
        assert funded.status_code == 201
        assert funded.get_json()["wallet"]["balance"] == "10000.00"

        start = (utcnow() + timedelta(days=3)).replace(hour=9, minute=0, second=0, microsecond=0)
        created = student_client.post(
            "/api/v1/bookings",
            json={
                "teacher_id": teacher["id"],
                "subject_id": subject["id"],
                "start_time": start.isoformat(),
                "duration_minutes": 90,
            },
        )
        assert created.status_code == 201, created.get_json()
        booking = created.get_json()
        assert booking["status"] == "pending"
        assert booking["amount_ngn"] == "6000.00"

        approved = teacher_client.post(f"/api/v1/bookings/{booking['id']}/approve")
        assert approved.status_code == 200
        assert approved.get_json()["session_id"] is not None

        detail = student_client.get(f"/api/v1/bookings/{booking['id']}").get_json()
        assert detail["status"] == "approved"
        assert [row["action"] for row in detail["history"]] == ["created", "approved"]

        listed = student_client.get("/api/v1/bookings/me").get_json()
        assert listed["total"] == 1
        transactions = student_client.get("/api/v1/wallet/transactions?type=debit").get_json()
        assert [row["amount"] for row in transactions["items"]] == ["6000.00"]

    def test_outsider_cannot_view_booking(self, app, verified_teacher):
        _, teacher, subject = verified_teacher
        student_client, _ = _register(app, "student", "one@example.com")
        student_client.post("/api/v1/wallet/fund", json={"amount": "10000"})
        start = (utcnow() + timedelta(days=3)).replace(microsecond=0)
        booking = student_client.post(
            "/api/v1/bookings",
            json={"teacher_id": teacher["id"], "subject_id": subject["id"], "start_time": start.isoformat(), "duration_minutes": 60},
        ).get_json()
        other_client, _ = _register(app, "student", "two@example.com")

        assert other_client.get(f"/api/v1/bookings/{booking['id']}").status_code == 404

    @pytest.mark.parametrize(
        "payload",
        [
            {"teacher_id": "abc", "start_time": "2030-01-01T10:00:00Z", "duration_minutes": 60},
            {"teacher_id": 1, "start_time": "next tuesday", "duration_minutes": 60},
        ],
    )
    def test_bad_booking_payload(self, app, payload):
        client, _ = _register(app, "student", "typo@example.com")

        response = client.post("/api/v1/bookings", json=payload)

        assert response.status_code == 400
        assert "error" in response.get_json()


class TestPublicDirectory:
    def test_list_and_slots(self, app, verified_teacher):
        teacher_client, teacher, _ = verified_teacher
        day = (utcnow() + timedelta(days=4)).date()
        windows = [{"day_of_week": day.weekday(), "start_time": "08:00", "end_time": "10:00"}]
        assert teacher_client.put("/api/v1/teachers/me/availability", json={"windows": windows}).status_code == 200

        client = app.test_client()
        listing = client.get("/api/v1/teachers?subject=tajweed").get_json()
        assert [row["teacher_id"] for row in listing["items"]] == [teacher["id"]]

        slots = client.get(f"/api/v1/teachers/{teacher['id']}/slots?date={day.isoformat()}").get_json()
        assert len(slots["slots"]) == 1
        assert client.get(f"/api/v1/teachers/{teacher['id']}/slots?date=soon").status_code == 400


class TestAdminSettings:
    def test_update_settings(self, admin_client):
        response = admin_client.put("/api/v1/admin/settings", json={"commission_pct": "15"})

        assert response.status_code == 200
        assert response.get_json()["commission_pct"] == "15"
        assert admin_client.get("/api/v1/admin/settings").get_json()["commission_pct"] == "15"

    def test_rejects_unknown_or_empty(self, admin_client):
        assert admin_client.put("/api/v1/admin/settings", json={}).status_code == 400
        assert admin_client.put("/api/v1/admin/settings", json={"tip_jar": "1"}).status_code == 400


BANK_DETAILS = {"bank_name": "GTBank", "account_number": "0123456789", "account_name": "Musa Bello"}


@pytest.fixture
def lesson_start():
    return (utcnow() + timedelta(days=3)).replace(hour=9, minute=0, second=0, microsecond=0)


@pytest.fixture
def booked(app, verified_teacher, lesson_start):
    """A funded student with a pending one-hour booking."""
    teacher_client, teacher, subject = verified_teacher
    student_client, student = _register(app, "student", "learner@example.com", "Bilal Ade")
    student_client.post("/api/v1/wallet/fund", json={"amount": "10000"})
    booking = student_client.post(
        "/api/v1/bookings",
        json={
            "teacher_id": teacher["id"],
            "subject_id": subject["id"],
            "start_time": lesson_start.isoformat(),
            "duration_minutes": 60,
        },
    ).get_json()
    return student_client, student, teacher_client, teacher, booking


@pytest.fixture
def approved(booked):
    _, _, teacher_client, _, booking = booked
    assert teacher_client.post(f"/api/v1/bookings/{booking['id']}/approve").status_code == 200
    return booked


class TestGuardianChildren:
    def test_guardian_adds_child(self, app):
        client, guardian = _register(app, "guardian", "parent@example.com", "Hauwa Sani")

        response = client.post(
            "/api/v1/auth/children",
            json={"full_name": "Yusuf Sani", "email": "yusuf@example.com", "password": PASSWORD},
        )

        assert response.status_code == 201
        child = response.get_json()
        assert child["role"] == "student"
        assert child["guardian_id"] == guardian["id"]
        me = client.get("/api/v1/auth/me").get_json()
        assert [row["id"] for row in me["children"]] == [child["id"]]

    def test_self_registration_cannot_claim_guardian(self, app):
        _, guardian = _register(app, "guardian", "parent@example.com")

        response = app.test_client().post(
            "/api/v1/auth/register",
            json={
                "full_name": "Stranger",
                "email": "stranger@example.com",
                "password": PASSWORD,
                "role": "student",
                "guardian_id": guardian["id"],
            },
        )

        assert response.status_code == 400
        with app.app_context():
            assert db.session.get(User, guardian["id"]).children.count() == 0

    def test_only_guardians_add_children(self, app):
        client, _ = _register(app, "student", "kid@example.com")

        response = client.post(
            "/api/v1/auth/children",
            json={"full_name": "Other", "email": "other@example.com", "password": PASSWORD},
        )

        assert response.status_code == 403


class TestSessionEndpoints:
    """Session listing and the join and completion guards over HTTP."""

    def test_list_clamps_paging(self, approved):
        student_client, _, _, _, booking = approved

        listed = student_client.get("/api/v1/sessions/me?page=-3&per_page=0").get_json()

        assert listed["page"] == 1
        assert listed["per_page"] == 20
        assert listed["total"] == 1
        assert listed["items"][0]["booking_id"] == booking["id"]
        assert listed["items"][0]["status"] == "scheduled"

    def test_join_before_window_and_early_completion(self, approved):
        student_client, _, teacher_client, _, _ = approved
        session_id = student_client.get("/api/v1/sessions/me").get_json()["items"][0]["id"]

        joined = student_client.post(f"/api/v1/sessions/{session_id}/join")
        assert joined.status_code == 409
        assert joined.get_json() == {"error": "Session is not open yet."}

        assert student_client.post(f"/api/v1/sessions/{session_id}/complete").status_code == 403
        completed = teacher_client.post(f"/api/v1/sessions/{session_id}/complete", json={"notes": "Early"})
        assert completed.status_code == 409
        assert completed.get_json() == {"error": "Session has not started yet."}

    def test_outsider_cannot_see_session(self, app, approved):
        student_client, _, _, _, _ = approved
        session_id = student_client.get("/api/v1/sessions/me").get_json()["items"][0]["id"]
        other_client, _ = _register(app, "student", "nosy@example.com")

        assert other_client.post(f"/api/v1/sessions/{session_id}/join").status_code == 404


class TestModificationEndpoints:
    def test_reschedule_request_and_approval(self, approved, lesson_start):
        student_client, _, teacher_client, _, booking = approved
        new_start = lesson_start + timedelta(days=1)

        created = student_client.post(
            "/api/v1/modifications/reschedule",
            json={"booking_id": str(booking["id"]), "new_start_time": new_start.isoformat(), "reason": "Exams"},
        )
        assert created.status_code == 201, created.get_json()
        modification = created.get_json()
        assert modification["status"] == "pending"
        assert [row["id"] for row in teacher_client.get("/api/v1/modifications/me").get_json()] == [modification["id"]]

        approved_response = teacher_client.post(f"/api/v1/modifications/{modification['id']}/approve", json={"notes": "OK"})

        assert approved_response.status_code == 200
        assert approved_response.get_json()["status"] == "completed"
        detail = student_client.get(f"/api/v1/bookings/{booking['id']}").get_json()
        assert detail["start_time"] == new_start.isoformat()

    @pytest.mark.parametrize(
        "overrides",
        [{"booking_id": "abc"}, {"booking_id": None}, {"new_start_time": "whenever"}],
    )
    def test_bad_reschedule_payload(self, approved, lesson_start, overrides):
        student_client, _, _, _, booking = approved
        payload = {"booking_id": booking["id"], "new_start_time": (lesson_start + timedelta(days=1)).isoformat()}
        payload.update(overrides)

        response = student_client.post("/api/v1/modifications/reschedule", json=payload)

        assert response.status_code == 400

    def test_teacher_cannot_request(self, approved, lesson_start):
        _, _, teacher_client, _, booking = approved

        response = teacher_client.post(
            "/api/v1/modifications/reschedule",
            json={"booking_id": booking["id"], "new_start_time": (lesson_start + timedelta(days=1)).isoformat()},
        )

        assert response.status_code == 403


class TestPayoutEndpoints:
    """Teachers preview and request withdrawals of their earnings."""

    @pytest.fixture
    def earning_teacher(self, app, verified_teacher):
        client, teacher, _ = verified_teacher
        with app.app_context():
            WalletService.credit_earnings(teacher["id"], "20000", "Session payment")
            db.session.commit()
        return client, teacher

    def test_calculate_and_request(self, earning_teacher):
        client, teacher = earning_teacher

        preview = client.post("/api/v1/payouts/calculate", json={"method": "bank_transfer", "amount": "10000"})
        assert preview.status_code == 200
        assert preview.get_json()["net_amount_ngn"] == "9900.00"

        created = client.post(
            "/api/v1/payouts", json={"amount": "10000", "method": "bank_transfer", "details": BANK_DETAILS}
        )
        assert created.status_code == 201, created.get_json()
        payout = created.get_json()
        assert payout["amount"] == "9900.00"
        assert payout["teacher_id"] == teacher["id"]

        listed = client.get("/api/v1/payouts/me?per_page=500").get_json()
        assert listed["per_page"] == 100
        assert [row["id"] for row in listed["items"]] == [payout["id"]]

        cancelled = client.post(f"/api/v1/payouts/{payout['id']}/cancel")
        assert cancelled.status_code == 200
        assert cancelled.get_json()["status"] == "cancelled"

    def test_bad_payment_method_id(self, earning_teacher):
        client, _ = earning_teacher

        response = client.post("/api/v1/payouts", json={"amount": "1000", "payment_method_id": "first"})

        assert response.status_code == 400

    def test_students_cannot_request(self, app):
        client, _ = _register(app, "student", "learner@example.com")

        assert client.post("/api/v1/payouts", json={"amount": "1000", "method": "paypal"}).status_code == 403
        assert client.get("/api/v1/payouts/methods").status_code == 403


class TestMessageEndpoints:
    def test_student_messages_booked_teacher(self, booked):
        student_client, student, teacher_client, teacher, _ = booked

        started = student_client.post(
            "/api/v1/messages/conversations", json={"recipient_id": str(teacher["id"]), "body": "Salaam, ustadh"}
        )
        assert started.status_code == 201
        conversation_id = started.get_json()["id"]
        again = student_client.post("/api/v1/messages/conversations", json={"recipient_id": teacher["id"]})
        assert again.status_code == 200
        assert again.get_json()["id"] == conversation_id

        inbox = teacher_client.get("/api/v1/messages/conversations").get_json()
        assert inbox[0]["unread_count"] == 1
        assert inbox[0]["participants"][0]["id"] == student["id"]

        messages = teacher_client.get(f"/api/v1/messages/conversations/{conversation_id}").get_json()
        assert [row["body"] for row in messages] == ["Salaam, ustadh"]
        assert teacher_client.get("/api/v1/messages/conversations").get_json()[0]["unread_count"] == 0

        reply = teacher_client.post(f"/api/v1/messages/conversations/{conversation_id}", json={"body": "Wa alaikum salaam"})
        assert reply.status_code == 201

    def test_unrelated_student_is_refused(self, app, booked):
        _, _, _, teacher, _ = booked
        other_client, _ = _register(app, "student", "stranger@example.com")

        response = other_client.post("/api/v1/messages/conversations", json={"recipient_id": teacher["id"]})

        assert response.status_code == 403
        assert other_client.post("/api/v1/messages/conversations", json={"recipient_id": "abc"}).status_code == 400


class TestNotificationEndpoints:
    def test_teacher_reads_booking_notification(self, booked):
        student_client, _, teacher_client, _, _ = booked

        inbox = teacher_client.get("/api/v1/notifications/me?limit=500").get_json()
        assert inbox["unread_count"] >= 1
        notification_id = inbox["items"][0]["id"]

        assert student_client.post(f"/api/v1/notifications/{notification_id}/read").status_code == 404
        marked = teacher_client.post(f"/api/v1/notifications/{notification_id}/read")
        assert marked.status_code == 200
        assert marked.get_json()["is_read"] is True

        assert teacher_client.post("/api/v1/notifications/me/read").status_code == 200
        assert teacher_client.get("/api/v1/notifications/me?unread=1").get_json() == {"unread_count": 0, "items": []}
