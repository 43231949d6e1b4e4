from ..extensions import db
from .user import User, RefreshToken, ActivityLog
from .cohort import Cohort, CohortUser
from .assignment import Assignment, Submission
from .attendance import Attendance
from .forum import ForumPost, ForumAnswer
from .gamification import Badge, UserBadge, UserPoints, Streak

__all__ = [
    "User", "RefreshToken", "ActivityLog", "Cohort", "CohortUser",
    "Assignment", "Submission", "Attendance", "ForumPost", "ForumAnswer",
    "Badge", "UserBadge", "UserPoints", "Streak",
]
