"""Tests for /api/auth endpoints."""

from skilllink.extensions import db
from skilllink.models import ActivityLog, CohortUser, RefreshToken, User
from skilllink.models.user import ADMIN, STUDENT

PASSWORD = "password123"


def _other_code(code):
    return "AAAAAA" if code != "AAAAAA" else "BBBBBB"


class TestAdminRegister:
    """Tests for POST /api/auth/admin/register."""

    def test_register_returns_user_and_token(self, client, refresh_cookie):
        """A new admin gets an access token and a refresh cookie."""
        resp = client.post("/api/auth/admin/register",
                           json={"email": "Boss@Example.com", "password": PASSWORD,
                                 "name": "Boss"})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"]["user"]["role"] == ADMIN
        assert body["data"]["user"]["email"] == "boss@example.com"
        assert body["data"]["accessToken"]
        assert refresh_cookie(resp)

    def test_duplicate_email_rejected(self, client, admin):
        """Registering an email twice is a 400."""
        resp = client.post("/api/auth/admin/register",
                           json={"email": admin.email, "password": PASSWORD, "name": "X"})
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False

    def test_short_password_rejected(self, client):
        """Passwords under eight characters are refused."""
        resp = client.post("/api/auth/admin/register",
                           json={"email": "a@b.co", "password": "short", "name": "X"})
        assert resp.status_code == 400

    def test_non_string_password(self, client):
        """A numeric password is a validation error, not a server error."""
        resp = client.post("/api/auth/admin/register",
                           json={"email": "a@b.co", "password": 12345678, "name": "X"})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "password must be a string"

    def test_missing_fields_listed(self, client):
        """Missing fields come back in the errors list."""
        resp = client.post("/api/auth/admin/register", json={"email": "a@b.co"})
        assert resp.status_code == 400
        fields = {e["field"] for e in resp.get_json()["errors"]}
        assert fields == {"password", "name"}


class TestFacilitatorLogin:
    """Tests for POST /api/auth/facilitator/login."""

    def test_login_with_access_code(self, client, facilitator):
        """Correct email, password and access code log the facilitator in."""
        resp = client.post("/api/auth/facilitator/login",
                           json={"email": facilitator.email, "password": PASSWORD,
                                 "accessCode": facilitator.access_code.lower()})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["id"] == facilitator.id

    def test_wrong_access_code(self, client, facilitator):
        """A wrong code is a 401 with its own message."""
        resp = client.post("/api/auth/facilitator/login",
                           json={"email": facilitator.email, "password": PASSWORD,
                                 "accessCode": _other_code(facilitator.access_code)})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Invalid access code"

    def test_student_cannot_use_facilitator_login(self, client, student):
        """Non-facilitators get the generic credentials error."""
        resp = client.post("/api/auth/facilitator/login",
                           json={"email": student.email, "password": PASSWORD,
                                 "accessCode": "ABC123"})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Invalid credentials"

    def test_inactive_facilitator_forbidden(self, client, make_user):
        """Deactivated facilitators are refused with 403."""
        f = make_user("FACILITATOR", active=False)
        resp = client.post("/api/auth/facilitator/login",
                           json={"email": f.email, "password": PASSWORD,
                                 "accessCode": f.access_code})
        assert resp.status_code == 403

    def test_non_string_password(self, client, facilitator):
        """A numeric password is a validation error, not a server error."""
        resp = client.post("/api/auth/facilitator/login",
                           json={"email": facilitator.email, "password": 12345678,
                                 "accessCode": facilitator.access_code})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "password must be a string"


class TestStudentRegister:
    """Tests for POST /api/auth/student/register."""

    def test_new_student_enrolled(self, app, client, cohort):
        """A valid invite token creates the student and enrolls them."""
        resp = client.post("/api/auth/student/register",
                           json={"email": "new@example.com", "password": PASSWORD,
                                 "name": "Newbie", "inviteToken": cohort.student_invite_link})
        assert resp.status_code == 201
        uid = resp.get_json()["data"]["user"]["id"]
        with app.app_context():
            assert db.session.get(User, uid).role == STUDENT
            assert CohortUser.query.filter_by(cohort_id=cohort.id, user_id=uid).count() == 1

    def test_existing_member_rejected(self, client, cohort, student):
        """Joining a cohort twice is a 400."""
        resp = client.post("/api/auth/student/register",
                           json={"email": student.email, "password": PASSWORD,
                                 "name": "Sam", "inviteToken": cohort.student_invite_link})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Already enrolled in this cohort"

    def test_existing_user_joins_second_cohort(self, client, make_cohort, facilitator, student):
        """An existing account is enrolled into another cohort."""
        other = make_cohort(facilitator, name="Cohort B")
        resp = client.post("/api/auth/student/register",
                           json={"email": student.email, "password": PASSWORD,
                                 "name": "Sam", "inviteToken": other.student_invite_link})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["id"] == student.id

    def test_invalid_token(self, client):
        """Unknown invite tokens are a 400."""
        resp = client.post("/api/auth/student/register",
                           json={"email": "x@example.com", "password": PASSWORD,
                                 "name": "X", "inviteToken": "nope"})
        assert resp.status_code == 400

    def test_inactive_cohort_token(self, client, make_cohort, facilitator):
        """Invite links of deleted cohorts no longer work."""
        c = make_cohort(facilitator, active=False)
        resp = client.post("/api/auth/student/register",
                           json={"email": "x@example.com", "password": PASSWORD,
                                 "name": "X", "inviteToken": c.student_invite_link})
        assert resp.status_code == 400

    def test_inactive_account_cannot_join(self, app, client, make_cohort, facilitator,
                                          make_user):
        """A deactivated account is refused and not enrolled."""
        u = make_user(active=False)
        other = make_cohort(facilitator, name="Cohort B")
        resp = client.post("/api/auth/student/register",
                           json={"email": u.email, "password": PASSWORD,
                                 "name": "X", "inviteToken": other.student_invite_link})
        assert resp.status_code == 403
        with app.app_context():
            assert CohortUser.query.filter_by(cohort_id=other.id, user_id=u.id).count() == 0

    def test_non_string_password(self, client, cohort):
        """A numeric password is a validation error, not a server error."""
        resp = client.post("/api/auth/student/register",
                           json={"email": "x@example.com", "password": 12345678,
                                 "name": "X", "inviteToken": cohort.student_invite_link})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "password must be a string"


class TestLogin:
    """Tests for POST /api/auth/login."""

    def test_login_logs_activity(self, app, client, student):
        """Successful login returns a token and records an activity log row."""
        resp = client.post("/api/auth/login",
                           json={"email": student.email, "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["accessToken"]
        with app.app_context():
            assert ActivityLog.query.filter_by(user_id=student.id, action="login").count() == 1

    def test_bad_password(self, client, student):
        """Wrong passwords are a 401."""
        resp = client.post("/api/auth/login",
                           json={"email": student.email, "password": "wrong-password"})
        assert resp.status_code == 401

    def test_unknown_email(self, client):
        """Unknown emails are a 401 too."""
        resp = client.post("/api/auth/login",
                           json={"email": "ghost@example.com", "password": PASSWORD})
        assert resp.status_code == 401

    def test_inactive_user(self, client, make_user):
        """Inactive accounts are refused with 403."""
        u = make_user(active=False)
        resp = client.post("/api/auth/login", json={"email": u.email, "password": PASSWORD})
        assert resp.status_code == 403

    def test_non_string_password(self, client, student):
        """A numeric password is a validation error, not a server error."""
        resp = client.post("/api/auth/login",
                           json={"email": student.email, "password": 12345678})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "password must be a string"


class TestRefresh:
    """Tests for POST /api/auth/refresh."""

    def _login(self, client, user, refresh_cookie):
        resp = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
        return refresh_cookie(resp)

    def test_refresh_rotates_token(self, app, client, student, refresh_cookie):
        """A refresh token is exchanged for a new one exactly once."""
        old = self._login(client, student, refresh_cookie)
        resp = client.post("/api/auth/refresh", json={"refreshToken": old})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["accessToken"]
        new = refresh_cookie(resp)
        assert new and new != old

        again = client.post("/api/auth/refresh", json={"refreshToken": old})
        assert again.status_code == 401
        with app.app_context():
            assert RefreshToken.query.filter_by(token=old).count() == 0
            assert RefreshToken.query.filter_by(token=new).count() == 1

    def test_missing_token(self, client):
        """No token at all is a 400."""
        assert client.post("/api/auth/refresh", json={}).status_code == 400

    def test_forged_token(self, client):
        """Garbage tokens are a 401."""
        resp = client.post("/api/auth/refresh", json={"refreshToken": "abc.def.ghi"})
        assert resp.status_code == 401

    def test_logout_revokes(self, client, student, refresh_cookie):
        """After logout the refresh token is dead."""
        token = self._login(client, student, refresh_cookie)
        assert client.post("/api/auth/logout", json={"refreshToken": token}).status_code == 200
        resp = client.post("/api/auth/refresh", json={"refreshToken": token})
        assert resp.status_code == 401


class TestMe:
    """Tests for GET /api/auth/me and PUT /api/auth/password."""

    def test_me(self, client, student, auth_headers):
        """The bearer token resolves to the current user."""
        resp = client.get("/api/auth/me", headers=auth_headers(student))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["email"] == student.email

    def test_me_requires_auth(self, client):
        """Without a token the envelope reports 401."""
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "message": "Authentication required"}

    def test_bad_bearer(self, client):
        """A tampered token is treated as anonymous."""
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer x.y.z"})
        assert resp.status_code == 401

    def test_deactivated_user_token_rejected(self, app, client, student, auth_headers):
        """Tokens stop working once the account is deactivated."""
        headers = auth_headers(student)
        with app.app_context():
            db.session.get(User, student.id).is_active_flag = False
            db.session.commit()
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_change_password(self, client, student, auth_headers):
        """The new password works and the old one does not."""
        resp = client.put("/api/auth/password", headers=auth_headers(student),
                          json={"currentPassword": PASSWORD, "newPassword": "brand-new-pass"})
        assert resp.status_code == 200
        assert client.post("/api/auth/login", json={
            "email": student.email, "password": "brand-new-pass"}).status_code == 200
        assert client.post("/api/auth/login", json={
            "email": student.email, "password": PASSWORD}).status_code == 401

    def test_change_password_wrong_current(self, client, student, auth_headers):
        """A wrong current password is a 400."""
        resp = client.put("/api/auth/password", headers=auth_headers(student),
                          json={"currentPassword": "nope-nope", "newPassword": "brand-new-pass"})
        assert resp.status_code == 400

    def test_change_password_non_string(self, client, student, auth_headers):
        """Numeric current or new passwords are validation errors."""
        headers = auth_headers(student)
        resp = client.put("/api/auth/password", headers=headers,
                          json={"currentPassword": 12345678, "newPassword": "brand-new-pass"})
        assert resp.status_code == 400
        resp = client.put("/api/auth/password", headers=headers,
                          json={"currentPassword": PASSWORD, "newPassword": 123456789})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "newPassword must be a string"
