"""Dashboard aggregations: platform overview, cohort health, student progress."""
from collections import Counter
from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..http import ApiError
from ..models import (
    ActivityLog, Assignment, Attendance, Cohort, CohortUser, ForumAnswer,
    ForumPost, Streak, Submission, User, UserBadge, UserPoints,
)
from ..models.assignment import ARCHIVED, PUBLISHED
from ..models.attendance import PRESENT
from ..models.cohort import MEMBER_STUDENT
from ..models.common import iso, utcnow

GROWTH_WINDOW_DAYS = 30
AT_RISK_AVERAGE = 70
AT_RISK_SUBMISSION_RATE = 50
GRADE_LETTERS = (("A", 90), ("B", 80), ("C", 70), ("D", 60), ("F", 0))
GRADE_BANDS = (("90-100", 90), ("80-89", 80), ("70-79", 70), ("60-69", 60), ("0-59", 0))


def rate(part, whole):
    """part / whole as a percentage; 0 when there is nothing to measure."""
    return part / whole * 100 if whole else 0


def round1(value):
    return round(value * 10) / 10


def bucket(percentage, bands):
    for label, floor in bands:
        if percentage >= floor:
            return label
    return bands[-1][0]


def get_cohort_or_404(cohort_id):
    cohort = db.session.get(Cohort, cohort_id)
    if cohort is None:
        raise ApiError("Cohort not found", 404)
    return cohort


def published_assignments_for(user_id, cohort_id=None):
    q = (Assignment.query.join(CohortUser, CohortUser.cohort_id == Assignment.cohort_id)
         .filter(CohortUser.user_id == user_id, Assignment.status == PUBLISHED))
    if cohort_id is not None:
        q = q.filter(Assignment.cohort_id == cohort_id)
    return q


def attendance_counts(**filters):
    rows = (db.session.query(Attendance.status, func.count(Attendance.id))
            .filter_by(**filters).group_by(Attendance.status).all())
    return [{"status": status, "count": count} for status, count in rows]


def get_admin_overview():
    since = utcnow() - timedelta(days=GROWTH_WINDOW_DAYS)
    average = (db.session.query(func.avg(Submission.grade))
               .filter(Submission.grade.isnot(None)).scalar())
    trend = (db.session.query(ActivityLog.action, func.count(ActivityLog.id))
             .filter(ActivityLog.created_at >= since)
             .group_by(ActivityLog.action).all())
    return {
        "overview": {
            "totalUsers": User.query.count(),
            "activeUsers": User.query.filter(User.is_active_flag.is_(True)).count(),
            "totalCohorts": Cohort.query.count(),
            "activeCohorts": Cohort.query.filter_by(is_active=True).count(),
            "totalAssignments": Assignment.query.count(),
            "totalSubmissions": Submission.query.count(),
            "averageGrade": round1(average or 0),
        },
        "growth": {
            "newUsers": User.query.filter(User.created_at >= since).count(),
            "newCohorts": Cohort.query.filter(Cohort.created_at >= since).count(),
        },
        "activityTrend": [{"action": a, "count": c} for a, c in trend],
    }


def at_risk_profile(student, cohort_id, published_ids):
    subs = (Submission.query
            .filter(Submission.user_id == student.id,
                    Submission.assignment_id.in_(published_ids))
            .all()) if published_ids else []
    graded = [s.percentage for s in subs if s.grade is not None]
    avg = sum(graded) / len(graded) if graded else None
    submission_rate = rate(len(subs), len(published_ids))
    present = Attendance.query.filter_by(user_id=student.id, cohort_id=cohort_id,
                                         status=PRESENT).count()
    at_risk = ((avg is not None and avg < AT_RISK_AVERAGE)
               or (published_ids and submission_rate < AT_RISK_SUBMISSION_RATE))
    return {
        "studentId": student.id,
        "student": student.brief(),
        "avgGrade": round1(avg or 0),
        "submissionRate": round1(submission_rate),
        "attendanceCount": present,
        "isAtRisk": bool(at_risk),
    }


def get_facilitator_analytics(cohort_id):
    cohort = get_cohort_or_404(cohort_id)
    students = [m.user for m in cohort.members if m.role == MEMBER_STUDENT]
    student_ids = [s.id for s in students]
    assignments = [a for a in cohort.assignments if a.status != ARCHIVED]
    published_ids = [a.id for a in assignments if a.status == PUBLISHED]

    submission_stats = []
    for a in assignments:
        count = sum(1 for s in a.submissions if s.user_id in student_ids)
        submission_stats.append({
            "assignmentId": a.id,
            "title": a.title,
            "totalStudents": len(student_ids),
            "submissions": count,
            "rate": round1(rate(count, len(student_ids))),
        })

    distribution = Counter({letter: 0 for letter, _ in GRADE_LETTERS})
    for a in assignments:
        for s in a.submissions:
            if s.grade is not None and s.user_id in student_ids:
                distribution[bucket(s.percentage, GRADE_LETTERS)] += 1

    profiles = [at_risk_profile(s, cohort.id, published_ids) for s in students]
    return {
        "cohort": cohort.to_dict(),
        "totalStudents": len(student_ids),
        "submissionStats": submission_stats,
        "gradeDistribution": dict(distribution),
        "atRiskStudents": [p for p in profiles if p["isAtRisk"]],
        "attendanceStats": attendance_counts(cohort_id=cohort.id),
    }


def get_student_progress(user_id):
    submissions = (Submission.query.filter_by(user_id=user_id)
                   .order_by(Submission.submitted_at.desc()).all())
    published = published_assignments_for(user_id).all()
    published_ids = {a.id for a in published}
    completed = sum(1 for s in submissions if s.assignment_id in published_ids)
    graded = [s for s in submissions if s.grade is not None]
    points = UserPoints.query.filter_by(user_id=user_id).one_or_none()
    memberships = CohortUser.query.filter_by(user_id=user_id, role=MEMBER_STUDENT).all()

    return {
        "gradeHistory": [
            {
                "date": iso(s.submitted_at),
                "grade": s.grade,
                "percentage": round1(s.percentage),
                "assignment": s.assignment.title,
            }
            for s in graded
        ],
        "completionRate": round1(rate(completed, len(published))),
        "avgGrade": round1(sum(s.grade for s in graded) / len(graded)) if graded else 0,
        "totalSubmissions": len(submissions),
        "attendanceCount": Attendance.query.filter_by(user_id=user_id, status=PRESENT).count(),
        "points": points.total_points if points else 0,
        "cohorts": [m.cohort.brief() for m in memberships],
    }


def assignment_status(assignment, submission, now=None):
    if submission is None:
        return "overdue" if (now or utcnow()) > assignment.due_date else "pending"
    return "graded" if submission.grade is not None else "submitted"


def get_cohort_student_progress(student_id, cohort_id):
    student = db.session.get(User, student_id)
    if student is None:
        raise ApiError("Student not found", 404)
    cohort = get_cohort_or_404(cohort_id)

    assignments = (Assignment.query
                   .filter_by(cohort_id=cohort.id, status=PUBLISHED)
                   .order_by(Assignment.due_date.desc()).all())
    mine = {s.assignment_id: s for s in Submission.query
            .filter(Submission.user_id == student.id,
                    Submission.assignment_id.in_([a.id for a in assignments])).all()} \
        if assignments else {}
    records = (Attendance.query.filter_by(cohort_id=cohort.id, user_id=student.id)
               .order_by(Attendance.date.desc()).all())
    posts = ForumPost.query.filter_by(cohort_id=cohort.id, user_id=student.id).count()
    answers = (ForumAnswer.query.join(ForumPost)
               .filter(ForumPost.cohort_id == cohort.id,
                       ForumAnswer.user_id == student.id).count())
    points = UserPoints.query.filter_by(user_id=student.id).one_or_none()
    streak = Streak.query.filter_by(user_id=student.id).one_or_none()

    graded = [mine[a.id] for a in assignments
              if a.id in mine and mine[a.id].grade is not None]
    present = sum(1 for r in records if r.status == PRESENT)
    now = utcnow()

    return {
        "student": student.brief(),
        "statistics": {
            "totalAssignments": len(assignments),
            "submittedAssignments": len(mine),
            "gradedAssignments": len(graded),
            "submissionRate": round1(rate(len(mine), len(assignments))),
            "averageGrade": round1(sum(s.percentage for s in graded) / len(graded))
                            if graded else 0,
            "attendanceRate": round1(rate(present, len(records))),
            "forumPosts": posts,
            "forumAnswers": answers,
            "totalPoints": points.total_points if points else 0,
            "badgesEarned": UserBadge.query.filter_by(user_id=student.id).count(),
            "currentStreak": streak.current_streak if streak else 0,
            "longestStreak": streak.longest_streak if streak else 0,
        },
        "assignments": [
            {
                "id": a.id,
                "title": a.title,
                "dueDate": iso(a.due_date),
                "maxScore": a.max_score,
                "submitted": a.id in mine,
                "submittedAt": iso(mine[a.id].submitted_at) if a.id in mine else None,
                "grade": mine[a.id].grade if a.id in mine else None,
                "feedback": mine[a.id].feedback if a.id in mine else None,
                "status": assignment_status(a, mine.get(a.id), now),
            }
            for a in assignments
        ],
        "attendanceRecords": [r.to_dict() for r in records[:10]],
    }


def get_cohort_students_progress(cohort_id):
    cohort = get_cohort_or_404(cohort_id)
    out = []
    for member in cohort.members:
        if member.role != MEMBER_STUDENT:
            continue
        progress = get_cohort_student_progress(member.user_id, cohort.id)
        out.append({"student": progress["student"], "statistics": progress["statistics"]})
    return out


def get_assignment_analytics(assignment_id):
    assignment = db.session.get(Assignment, assignment_id)
    if assignment is None:
        raise ApiError("Assignment not found", 404)

    student_ids = assignment.cohort.student_ids()
    submissions = sorted(assignment.submissions, key=lambda s: s.submitted_at, reverse=True)
    graded = [s for s in submissions if s.grade is not None]
    grades = [s.grade for s in graded]
    late = [s for s in submissions if s.is_late]
    average = sum(grades) / len(grades) if grades else 0

    bands = Counter({label: 0 for label, _ in GRADE_BANDS})
    for s in graded:
        bands[bucket(s.percentage, GRADE_BANDS)] += 1

    timeline = Counter(s.submitted_at.date().isoformat() for s in submissions)
    submitted_ids = {s.user_id for s in submissions}
    missing = [m.user.brief() for m in assignment.cohort.members
               if m.role == MEMBER_STUDENT and m.user_id not in submitted_ids]

    return {
        "assignment": {
            "id": assignment.id,
            "title": assignment.title,
            "description": assignment.description,
            "dueDate": iso(assignment.due_date),
            "maxScore": assignment.max_score,
            "status": assignment.status,
        },
        "statistics": {
            "totalStudents": len(student_ids),
            "submittedCount": len(submissions),
            "gradedCount": len(graded),
            "pendingCount": len(submissions) - len(graded),
            "notSubmittedCount": len(missing),
            "submissionRate": round1(rate(len(submissions), len(student_ids))),
            "lateSubmissions": len(late),
            "lateSubmissionRate": round1(rate(len(late), len(submissions))),
        },
        "gradeStatistics": {
            "averageGrade": round1(average),
            "averagePercentage": round1(average / assignment.max_score * 100),
            "highestGrade": max(grades) if grades else 0,
            "lowestGrade": min(grades) if grades else 0,
            "gradeDistribution": dict(bands),
        },
        "submissionTimeline": [{"date": d, "count": c} for d, c in sorted(timeline.items())],
        "submissions": [
            {
                "id": s.id,
                "student": s.user.brief(),
                "submittedAt": iso(s.submitted_at),
                "grade": s.grade,
                "feedback": s.feedback,
                "isLate": s.is_late,
                "status": "graded" if s.grade is not None else "pending",
            }
            for s in submissions
        ],
        "notSubmittedStudents": missing,
    }


def get_cohort_assignment_analytics(cohort_id):
    cohort = get_cohort_or_404(cohort_id)
    total = len(cohort.student_ids())
    assignments = (Assignment.query.filter_by(cohort_id=cohort.id, status=PUBLISHED)
                   .order_by(Assignment.due_date.desc()).all())
    out = []
    for a in assignments:
        grades = [s.grade for s in a.submissions if s.grade is not None]
        average = sum(grades) / len(grades) if grades else 0
        out.append({
            "id": a.id,
            "title": a.title,
            "dueDate": iso(a.due_date),
            "maxScore": a.max_score,
            "totalStudents": total,
            "submittedCount": len(a.submissions),
            "gradedCount": len(grades),
            "submissionRate": round1(rate(len(a.submissions), total)),
            "averageGrade": round1(average),
            "averagePercentage": round1(average / a.max_score * 100),
        })
    return out


def log_activity(user_id, action, **details):
    """Stage an ActivityLog row; the caller's commit persists it."""
    entry = ActivityLog(user_id=user_id, action=action, details=details or None,
                        created_at=utcnow())
    db.session.add(entry)
    return entry
