"""Tests for /api/analytics endpoints and the report renderers."""

from datetime import timedelta

import pytest

from skilllink.extensions import db
from skilllink.models import ActivityLog, Assignment, CohortUser, Submission
from skilllink.models.assignment import DRAFT
from skilllink.models.user import FACILITATOR
from skilllink.services import analytics, reports


@pytest.fixture
def graded_cohort(app, cohort, facilitator, student, make_user, make_assignment,
                  make_submission):
    """Two students: one strong, one who never hands anything in."""
    slacker = make_user(name="Slacker")
    with app.app_context():
        db.session.add(CohortUser(cohort_id=cohort.id, user_id=slacker.id, role="STUDENT"))
        db.session.commit()
    first = make_assignment(cohort, facilitator, title="One", max_score=50)
    second = make_assignment(cohort, facilitator, title="Two", max_score=50)
    make_assignment(cohort, facilitator, title="Hidden", status=DRAFT)
    make_submission(first, student, grade=45)
    make_submission(second, student, grade=40)
    return {"cohort": cohort, "student": student, "slacker": slacker}


class TestHelpers:
    """Tests for the small numeric helpers."""

    def test_rate_handles_zero(self):
        """Nothing to measure means a zero rate."""
        assert analytics.rate(3, 0) == 0
        assert analytics.rate(1, 4) == 25

    def test_bucket(self):
        """Percentages fall into the first band whose floor they reach."""
        assert analytics.bucket(90, analytics.GRADE_LETTERS) == "A"
        assert analytics.bucket(89.9, analytics.GRADE_LETTERS) == "B"
        assert analytics.bucket(12, analytics.GRADE_BANDS) == "0-59"

    def test_assignment_status(self, app, assignment, student, make_submission):
        """pending before the deadline, overdue after, then submitted and graded."""
        with app.app_context():
            a = db.session.get(Assignment, assignment.id)
            assert analytics.assignment_status(a, None) == "pending"
            assert analytics.assignment_status(a, None, now=a.due_date + timedelta(hours=1)) == "overdue"
        sub = make_submission(assignment, student)
        with app.app_context():
            s = db.session.get(Submission, sub.id)
            assert analytics.assignment_status(s.assignment, s) == "submitted"
            s.grade = 10
            assert analytics.assignment_status(s.assignment, s) == "graded"


class TestAdminOverview:
    """Tests for GET /api/analytics/admin/overview."""

    def test_overview(self, app, client, admin, graded_cohort, auth_headers):
        """Totals, average grade and the activity trend."""
        with app.app_context():
            db.session.add(ActivityLog(user_id=admin.id, action="login"))
            db.session.commit()
        data = client.get("/api/analytics/admin/overview",
                          headers=auth_headers(admin)).get_json()["data"]
        assert data["overview"]["totalSubmissions"] == 2
        assert data["overview"]["averageGrade"] == 42.5
        assert data["growth"]["newUsers"] == 4
        assert data["activityTrend"] == [{"action": "login", "count": 1}]

    def test_admin_only(self, client, facilitator, auth_headers):
        """Facilitators are forbidden."""
        resp = client.get("/api/analytics/admin/overview", headers=auth_headers(facilitator))
        assert resp.status_code == 403


class TestFacilitatorAnalytics:
    """Tests for GET /api/analytics/facilitator/<cohortId>."""

    def test_cohort_health(self, client, facilitator, graded_cohort, auth_headers):
        """Letter grades by percentage and the at-risk list."""
        cohort = graded_cohort["cohort"]
        data = client.get(f"/api/analytics/facilitator/{cohort.id}",
                          headers=auth_headers(facilitator)).get_json()["data"]
        assert data["totalStudents"] == 2
        assert data["gradeDistribution"] == {"A": 1, "B": 1, "C": 0, "D": 0, "F": 0}
        assert [s["title"] for s in data["submissionStats"]] == ["One", "Two", "Hidden"]
        assert data["submissionStats"][0]["rate"] == 50
        at_risk = [s["studentId"] for s in data["atRiskStudents"]]
        assert at_risk == [graded_cohort["slacker"].id]

    def test_foreign_facilitator(self, client, graded_cohort, make_user, auth_headers):
        """Facilitators only see cohorts they run."""
        other = make_user(FACILITATOR)
        resp = client.get(f"/api/analytics/facilitator/{graded_cohort['cohort'].id}",
                          headers=auth_headers(other))
        assert resp.status_code == 403

    def test_unknown_cohort(self, client, admin, auth_headers):
        """Missing cohorts are a 404."""
        assert client.get("/api/analytics/facilitator/77",
                          headers=auth_headers(admin)).status_code == 404


class TestStudentProgress:
    """Tests for the student progress routes."""

    def test_own_progress(self, client, graded_cohort, auth_headers):
        """Completion counts published work only."""
        data = client.get("/api/analytics/student/progress",
                          headers=auth_headers(graded_cohort["student"])).get_json()["data"]
        assert data["completionRate"] == 100
        assert data["avgGrade"] == 42.5
        assert len(data["gradeHistory"]) == 2
        assert data["cohorts"][0]["id"] == graded_cohort["cohort"].id

    def test_cohort_students(self, client, facilitator, graded_cohort, auth_headers):
        """Every student of the cohort gets a statistics block."""
        cohort = graded_cohort["cohort"]
        data = client.get(f"/api/analytics/cohorts/{cohort.id}/students",
                          headers=auth_headers(facilitator)).get_json()["data"]
        by_id = {row["student"]["id"]: row["statistics"] for row in data}
        assert by_id[graded_cohort["student"].id]["submissionRate"] == 100
        assert by_id[graded_cohort["student"].id]["averageGrade"] == 85
        assert by_id[graded_cohort["slacker"].id]["submittedAssignments"] == 0

    def test_single_student_detail(self, client, graded_cohort, auth_headers):
        """A student may read their own detail with per-assignment status."""
        student, cohort = graded_cohort["student"], graded_cohort["cohort"]
        data = client.get(f"/api/analytics/cohorts/{cohort.id}/students/{student.id}",
                          headers=auth_headers(student)).get_json()["data"]
        assert {a["status"] for a in data["assignments"]} == {"graded"}
        assert data["statistics"]["totalAssignments"] == 2

    def test_other_student_forbidden(self, client, graded_cohort, auth_headers):
        """Students cannot read each other's progress."""
        student, cohort = graded_cohort["student"], graded_cohort["cohort"]
        resp = client.get(f"/api/analytics/cohorts/{cohort.id}/students/{student.id}",
                          headers=auth_headers(graded_cohort["slacker"]))
        assert resp.status_code == 403


class TestExport:
    """Tests for POST /api/analytics/export and the renderers."""

    def test_csv_download(self, client, facilitator, graded_cohort, auth_headers):
        """CSV comes back as an attachment."""
        resp = client.post("/api/analytics/export", headers=auth_headers(facilitator),
                           json={"cohortId": graded_cohort["cohort"].id, "format": "csv"})
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert "attachment" in resp.headers["Content-Disposition"]
        text = resp.get_data(as_text=True)
        assert text.startswith("Cohort Analytics Report")
        assert "At-Risk Students" in text

    def test_text_download(self, client, facilitator, graded_cohort, auth_headers):
        """The plain text report has its banner."""
        resp = client.post("/api/analytics/export", headers=auth_headers(facilitator),
                           json={"cohortId": graded_cohort["cohort"].id, "format": "text"})
        assert resp.mimetype == "text/plain"
        assert "COHORT ANALYTICS REPORT" in resp.get_data(as_text=True)

    def test_unknown_format(self, client, facilitator, graded_cohort, auth_headers):
        """Only csv and text are offered."""
        resp = client.post("/api/analytics/export", headers=auth_headers(facilitator),
                           json={"cohortId": graded_cohort["cohort"].id, "format": "pdf"})
        assert resp.status_code == 400

    def test_render_rejects_unknown_format(self):
        """The renderer itself refuses unknown formats."""
        with pytest.raises(ValueError):
            reports.render_cohort_report({}, "xml")

    def test_csv_percentages(self):
        """Grade shares are percentages of all graded work."""
        data = {
            "cohort": {"name": "C"},
            "gradeDistribution": {"A": 3, "B": 1, "C": 0, "D": 0, "F": 0},
            "submissionStats": [],
            "attendanceStats": [],
            "atRiskStudents": [],
        }
        out = reports.cohort_report_csv(data)
        assert "A,3,75.00%" in out
        assert "At-Risk" not in out
