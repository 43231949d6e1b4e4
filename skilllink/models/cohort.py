from ..extensions import db
from .common import iso, utcnow

MEMBER_FACILITATOR = "FACILITATOR"
MEMBER_STUDENT = "STUDENT"
MEMBER_ROLES = (MEMBER_FACILITATOR, MEMBER_STUDENT)

class Cohort(db.Model):
    __tablename__ = "cohort"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    student_invite_link = db.Column(db.String(32), unique=True, nullable=False)
    facilitator_invite_link = db.Column(db.String(32), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    __table_args__ = (
        db.CheckConstraint("end_date >= start_date", name="ck_cohort_dates"),
    )

    created_by = db.relationship("User")
    members = db.relationship("CohortUser", back_populates="cohort",
                              cascade="all, delete-orphan")
    assignments = db.relationship("Assignment", back_populates="cohort",
                                  order_by="Assignment.due_date",
                                  cascade="all, delete-orphan")
    forum_posts = db.relationship("ForumPost", back_populates="cohort",
                                  cascade="all, delete-orphan")

    def student_ids(self):
        return [m.user_id for m in self.members if m.role == MEMBER_STUDENT]

    def has_member(self, user_id, role=None):
        return any(m.user_id == user_id and (role is None or m.role == role)
                   for m in self.members)

    def brief(self):
        return {"id": self.id, "name": self.name}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "startDate": iso(self.start_date),
            "endDate": iso(self.end_date),
            "studentInviteLink": self.student_invite_link,
            "facilitatorInviteLink": self.facilitator_invite_link,
            "isActive": self.is_active,
            "createdAt": iso(self.created_at),
            "createdBy": self.created_by.brief() if self.created_by else None,
        }

class CohortUser(db.Model):
    __tablename__ = "cohort_user"
    id = db.Column(db.Integer, primary_key=True)
    cohort_id = db.Column(db.Integer, db.ForeignKey("cohort.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=MEMBER_STUDENT)
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    __table_args__ = (
        db.UniqueConstraint("cohort_id", "user_id", name="uq_cohort_user"),
    )

    cohort = db.relationship("Cohort", back_populates="members")
    user = db.relationship("User", back_populates="memberships")

    def to_dict(self):
        return {
            "id": self.id,
            "cohortId": self.cohort_id,
            "userId": self.user_id,
            "role": self.role,
            "joinedAt": iso(self.joined_at),
            "user": self.user.brief() if self.user else None,
        }
