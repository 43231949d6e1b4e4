"""Points, daily streaks, badges and leaderboards.

Functions here only stage changes on ``db.session``; the calling route owns
the commit so that an activity and the points it earns land together.
"""
from collections import defaultdict
from datetime import timedelta

import structlog
from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    Assignment, Attendance, Badge, CohortUser, ForumAnswer, ForumPost, Streak,
    Submission, User, UserBadge, UserPoints,
)
from ..models.attendance import PRESENT
from ..models.cohort import MEMBER_STUDENT
from ..models.common import utcnow

logger = structlog.get_logger(__name__)

POINTS = {
    "ASSIGNMENT_SUBMIT": 10,
    "ASSIGNMENT_PERFECT": 50,
    "ASSIGNMENT_GRADE_A": 30,
    "ASSIGNMENT_GRADE_B": 20,
    "FORUM_POST": 5,
    "FORUM_ANSWER": 10,
    "FORUM_ENDORSED_ANSWER": 15,
    "FORUM_SOLVED": 20,
    "ATTENDANCE_PRESENT": 5,
    "ATTENDANCE_STREAK_BONUS": 10,
    "EARLY_SUBMISSION": 15,
}
CATEGORIES = ("assignment", "forum", "attendance")
EARLY_SUBMISSION_HOURS = 24
TIMEFRAMES = {"weekly": 7, "monthly": 30, "alltime": None}

BADGES = [
    {"type": "FIRST_ASSIGNMENT", "name": "First Steps",
     "description": "Submitted your first assignment", "icon": "🎯"},
    {"type": "PERFECT_SCORE", "name": "Perfect Score",
     "description": "Achieved a perfect score on an assignment", "icon": "💯"},
    {"type": "HELPFUL_CONTRIBUTOR", "name": "Helpful Contributor",
     "description": "Answered 10 forum questions", "icon": "🤝"},
    {"type": "ATTENDANCE_STREAK_5", "name": "5-Day Streak",
     "description": "Active 5 consecutive days", "icon": "🔥"},
    {"type": "ATTENDANCE_STREAK_10", "name": "10-Day Streak",
     "description": "Active 10 consecutive days", "icon": "⚡"},
    {"type": "ATTENDANCE_STREAK_20", "name": "20-Day Streak",
     "description": "Active 20 consecutive days", "icon": "🌟"},
    {"type": "TOP_PERFORMER", "name": "Top Performer",
     "description": "Averaged 90% or more over at least 5 graded assignments", "icon": "🏆"},
    {"type": "EARLY_BIRD", "name": "Early Bird",
     "description": "Submitted 3 assignments before their due date", "icon": "🐦"},
    {"type": "FORUM_EXPERT", "name": "Forum Expert",
     "description": "Answered 50 forum questions", "icon": "🎓"},
]
BADGE_TYPES = tuple(b["type"] for b in BADGES)


def ensure_badge_catalog():
    """Insert any catalog badge that is missing. Returns how many were added."""
    existing = {t for (t,) in db.session.query(Badge.type).all()}
    added = 0
    for entry in BADGES:
        if entry["type"] not in existing:
            db.session.add(Badge(**entry))
            added += 1
    return added


# ---------- points & streaks ----------

def _points_row(user_id):
    row = UserPoints.query.filter_by(user_id=user_id).one_or_none()
    if row is None:
        row = UserPoints(user_id=user_id, total_points=0, assignment_points=0,
                         forum_points=0, attendance_points=0)
        db.session.add(row)
    return row


def award_points(user_id, points, category, today=None):
    if category not in CATEGORIES:
        raise ValueError(f"unknown points category: {category}")
    row = _points_row(user_id)
    row.total_points += points
    attr = f"{category}_points"
    setattr(row, attr, getattr(row, attr) + points)

    update_streak(user_id, today=today)
    check_badge_eligibility(user_id)
    logger.info("gamification.points_awarded", user_id=user_id,
                points=points, category=category)
    return row


def update_streak(user_id, today=None):
    """Advance the daily activity streak: same day no-op, next day +1, gap resets."""
    today = today or utcnow().date()
    streak = Streak.query.filter_by(user_id=user_id).one_or_none()
    if streak is None:
        streak = Streak(user_id=user_id, current_streak=1, longest_streak=1,
                        last_activity_date=today)
        db.session.add(streak)
        return streak

    last = streak.last_activity_date
    if last is None:
        streak.current_streak = 1
    else:
        gap = (today - last).days
        if gap <= 0:
            return streak
        streak.current_streak = streak.current_streak + 1 if gap == 1 else 1
    streak.longest_streak = max(streak.longest_streak, streak.current_streak)
    streak.last_activity_date = today
    return streak


def handle_assignment_submission(submission, today=None):
    points = POINTS["ASSIGNMENT_SUBMIT"]
    due = submission.assignment.due_date
    if due - submission.submitted_at >= timedelta(hours=EARLY_SUBMISSION_HOURS):
        points += POINTS["EARLY_SUBMISSION"]
    return award_points(submission.user_id, points, "assignment", today=today)


def grade_bonus(grade, max_score):
    percentage = grade / max_score * 100
    if percentage >= 100:
        return POINTS["ASSIGNMENT_PERFECT"]
    if percentage >= 90:
        return POINTS["ASSIGNMENT_GRADE_A"]
    if percentage >= 80:
        return POINTS["ASSIGNMENT_GRADE_B"]
    return 0


def handle_assignment_graded(submission, today=None):
    bonus = grade_bonus(submission.grade, submission.assignment.max_score)
    if bonus:
        return award_points(submission.user_id, bonus, "assignment", today=today)
    check_badge_eligibility(submission.user_id)
    return None


def handle_forum_post(user_id):
    return award_points(user_id, POINTS["FORUM_POST"], "forum")


def handle_forum_answer(user_id):
    return award_points(user_id, POINTS["FORUM_ANSWER"], "forum")


def handle_forum_endorsement(user_id):
    return award_points(user_id, POINTS["FORUM_ENDORSED_ANSWER"], "forum")


def handle_forum_solved(user_id):
    return award_points(user_id, POINTS["FORUM_SOLVED"], "forum")


def handle_attendance(user_id, status, today=None):
    if status != PRESENT:
        return None
    points = POINTS["ATTENDANCE_PRESENT"]
    streak = Streak.query.filter_by(user_id=user_id).one_or_none()
    if streak and streak.current_streak > 0 and streak.current_streak % 5 == 0:
        points += POINTS["ATTENDANCE_STREAK_BONUS"]
    return award_points(user_id, points, "attendance", today=today)


# ---------- badges ----------

def check_badge_eligibility(user_id):
    """Award every badge the user now qualifies for; returns the new badge types."""
    submissions = (Submission.query.join(Assignment)
                   .filter(Submission.user_id == user_id).all())
    answer_count = ForumAnswer.query.filter_by(user_id=user_id).count()
    endorsed_answers = (ForumAnswer.query
                        .filter(ForumAnswer.user_id == user_id,
                                ForumAnswer.endorsements >= 5).count())
    streak = Streak.query.filter_by(user_id=user_id).one_or_none()
    current_streak = streak.current_streak if streak else 0

    wanted = []
    if submissions:
        wanted.append("FIRST_ASSIGNMENT")

    graded = [s for s in submissions if s.grade is not None]
    if any(s.grade >= s.assignment.max_score for s in graded):
        wanted.append("PERFECT_SCORE")
    if len(graded) >= 5:
        avg = sum(s.percentage for s in graded) / len(graded)
        if avg >= 90:
            wanted.append("TOP_PERFORMER")

    early = [s for s in submissions if s.submitted_at < s.assignment.due_date]
    if len(early) >= 3:
        wanted.append("EARLY_BIRD")

    if answer_count >= 10:
        wanted.append("HELPFUL_CONTRIBUTOR")
    if answer_count >= 50 or endorsed_answers >= 10:
        wanted.append("FORUM_EXPERT")

    for n in (5, 10, 20):
        if current_streak >= n:
            wanted.append(f"ATTENDANCE_STREAK_{n}")

    return [t for t in wanted if award_badge(user_id, t) is not None]


def award_badge(user_id, badge_type):
    """Grant a badge once. Returns the new UserBadge, or None if already held."""
    badge = Badge.query.filter_by(type=badge_type).one_or_none()
    if badge is None:
        logger.warning("gamification.badge_missing", badge_type=badge_type)
        return None
    held = UserBadge.query.filter_by(user_id=user_id, badge_id=badge.id).one_or_none()
    if held is not None:
        return None
    user_badge = UserBadge(user_id=user_id, badge=badge)
    db.session.add(user_badge)
    logger.info("gamification.badge_awarded", user_id=user_id, badge_type=badge_type)
    return user_badge


# ---------- leaderboard & stats ----------

def _cohort_student_ids(cohort_id):
    rows = (db.session.query(CohortUser.user_id)
            .filter_by(cohort_id=cohort_id, role=MEMBER_STUDENT).all())
    return [r[0] for r in rows]


def get_leaderboard(cohort_id=None, timeframe="alltime"):
    if timeframe not in TIMEFRAMES:
        raise ValueError(f"unknown timeframe: {timeframe}")
    size = current_app.config.get("LEADERBOARD_SIZE", 50)
    user_ids = _cohort_student_ids(cohort_id) if cohort_id else None

    days = TIMEFRAMES[timeframe]
    if days is not None:
        return _activity_leaderboard(user_ids, utcnow() - timedelta(days=days), size)

    q = UserPoints.query.join(User)
    if user_ids is not None:
        q = q.filter(UserPoints.user_id.in_(user_ids))
    rows = q.order_by(UserPoints.total_points.desc(), UserPoints.user_id).limit(size).all()
    return [
        {
            "rank": i,
            "userId": row.user_id,
            "totalPoints": row.total_points,
            "assignmentPoints": row.assignment_points,
            "forumPoints": row.forum_points,
            "attendancePoints": row.attendance_points,
            "user": row.user.brief(),
        }
        for i, row in enumerate(rows, start=1)
    ]


def _activity_leaderboard(user_ids, since, size):
    """Score only activity inside the window, mirroring the point table."""
    def scoped(q, column):
        return q.filter(column.in_(user_ids)) if user_ids is not None else q

    totals = defaultdict(float)
    subs = scoped(Submission.query.filter(Submission.submitted_at >= since),
                  Submission.user_id).all()
    for s in subs:
        totals[s.user_id] += POINTS["ASSIGNMENT_SUBMIT"] + (s.grade or 0)
    posts = scoped(ForumPost.query.filter(ForumPost.created_at >= since),
                   ForumPost.user_id).all()
    for p in posts:
        totals[p.user_id] += POINTS["FORUM_POST"]
    answers = scoped(ForumAnswer.query.filter(ForumAnswer.created_at >= since),
                     ForumAnswer.user_id).all()
    for a in answers:
        totals[a.user_id] += POINTS["FORUM_ANSWER"] + a.endorsements * 2
    present = scoped(Attendance.query.filter(Attendance.date >= since.date(),
                                             Attendance.status == PRESENT),
                     Attendance.user_id).all()
    for a in present:
        totals[a.user_id] += POINTS["ATTENDANCE_PRESENT"]

    if not totals:
        return []
    users = {u.id: u for u in User.query.filter(User.id.in_(list(totals))).all()}
    ranked = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))[:size]
    return [
        {"rank": i, "userId": uid, "totalPoints": int(round(points)),
         "user": users[uid].brief()}
        for i, (uid, points) in enumerate(ranked, start=1)
    ]


ACHIEVEMENTS = [
    # (stat, threshold, name, description, icon)
    ("submissions", 1, "First Steps", "Submitted first assignment", "🎯"),
    ("submissions", 10, "Dedicated Learner", "Submitted 10 assignments", "📚"),
    ("submissions", 25, "Assignment Master", "Submitted 25 assignments", "🏆"),
    ("forum_posts", 1, "Conversation Starter", "Created first forum post", "💬"),
    ("forum_answers", 5, "Helper", "Answered 5 questions", "🤝"),
    ("forum_answers", 25, "Community Champion", "Answered 25 questions", "⭐"),
    ("attendance", 10, "Regular Attendee", "Attended 10 sessions", "📅"),
    ("attendance", 50, "Perfect Attendance", "Attended 50 sessions", "✨"),
    ("streak", 7, "Week Warrior", "7-day streak", "🔥"),
    ("streak", 30, "Month Master", "30-day streak", "💪"),
    ("points", 100, "Century Club", "Earned 100 points", "💯"),
    ("points", 500, "Point Collector", "Earned 500 points", "💎"),
    ("points", 1000, "Elite Performer", "Earned 1000 points", "👑"),
    ("badges", 3, "Badge Collector", "Earned 3 badges", "🎖️"),
    ("badges", 5, "Badge Master", "Earned 5 badges", "🏅"),
]


def achievements_for(stats):
    return [
        {"name": name, "description": desc, "icon": icon}
        for stat, threshold, name, desc, icon in ACHIEVEMENTS
        if stats.get(stat, 0) >= threshold
    ]


def get_user_stats(user_id):
    points = UserPoints.query.filter_by(user_id=user_id).one_or_none()
    badges = (UserBadge.query.filter_by(user_id=user_id)
              .order_by(UserBadge.earned_at.desc()).all())
    streak = Streak.query.filter_by(user_id=user_id).one_or_none()
    submissions = Submission.query.filter_by(user_id=user_id).count()
    forum_posts = ForumPost.query.filter_by(user_id=user_id).count()
    forum_answers = ForumAnswer.query.filter_by(user_id=user_id).count()
    present = Attendance.query.filter_by(user_id=user_id, status=PRESENT).count()
    total_attendance = Attendance.query.filter_by(user_id=user_id).count()
    memberships = CohortUser.query.filter_by(user_id=user_id).all()

    rank = 0
    if points is not None:
        ahead = (db.session.query(func.count(UserPoints.id))
                 .filter(UserPoints.total_points > points.total_points).scalar())
        rank = ahead + 1

    total_points = points.total_points if points else 0
    current = streak.current_streak if streak else 0
    achievements = achievements_for({
        "submissions": submissions,
        "forum_posts": forum_posts,
        "forum_answers": forum_answers,
        "attendance": present,
        "badges": len(badges),
        "points": total_points,
        "streak": current,
    })

    return {
        "totalPoints": total_points,
        "pointsFromAssignments": points.assignment_points if points else 0,
        "pointsFromForum": points.forum_points if points else 0,
        "pointsFromAttendance": points.attendance_points if points else 0,
        "badges": [b.to_dict() for b in badges],
        "currentStreak": current,
        "longestStreak": streak.longest_streak if streak else 0,
        "lastActivityDate": streak.last_activity_date.isoformat()
                            if streak and streak.last_activity_date else None,
        "rank": rank,
        "completedAssignments": submissions,
        "attendanceRate": round(present / total_attendance * 100) if total_attendance else 0,
        "achievements": achievements,
        "cohorts": [m.cohort.brief() for m in memberships],
    }
