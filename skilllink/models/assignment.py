from ..extensions import db
from .common import iso, utcnow

DRAFT = "DRAFT"
PUBLISHED = "PUBLISHED"
ARCHIVED = "ARCHIVED"
ASSIGNMENT_STATUSES = (DRAFT, PUBLISHED, ARCHIVED)

class Assignment(db.Model):
    __tablename__ = "assignment"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    due_date = db.Column(db.DateTime, nullable=False)
    max_score = db.Column(db.Integer, nullable=False, default=100)
    status = db.Column(db.String(16), nullable=False, default=PUBLISHED)
    cohort_id = db.Column(db.Integer, db.ForeignKey("cohort.id"), nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    __table_args__ = (
        db.CheckConstraint("max_score >= 1", name="ck_assignment_max_score"),
    )

    cohort = db.relationship("Cohort", back_populates="assignments")
    created_by = db.relationship("User")
    submissions = db.relationship("Submission", back_populates="assignment",
                                  cascade="all, delete-orphan")

    def brief(self):
        return {"id": self.id, "title": self.title, "maxScore": self.max_score,
                "dueDate": iso(self.due_date)}

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "dueDate": iso(self.due_date),
            "maxScore": self.max_score,
            "status": self.status,
            "cohortId": self.cohort_id,
            "cohort": self.cohort.brief() if self.cohort else None,
            "createdBy": {"id": self.created_by.id, "name": self.created_by.name}
                         if self.created_by else None,
            "createdAt": iso(self.created_at),
        }

class Submission(db.Model):
    __tablename__ = "submission"
    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("assignment.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    github_url = db.Column(db.String(512))
    files = db.Column(db.JSON, nullable=False, default=list)
    grade = db.Column(db.Float)
    feedback = db.Column(db.Text)
    submitted_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    graded_at = db.Column(db.DateTime)
    __table_args__ = (
        db.UniqueConstraint("assignment_id", "user_id", name="uq_submission_student"),
        db.CheckConstraint("grade IS NULL OR grade >= 0", name="ck_grade_non_negative"),
    )

    assignment = db.relationship("Assignment", back_populates="submissions")
    user = db.relationship("User")

    @property
    def is_graded(self):
        return self.grade is not None

    @property
    def is_late(self):
        return self.submitted_at > self.assignment.due_date

    @property
    def percentage(self):
        if self.grade is None:
            return None
        return self.grade / self.assignment.max_score * 100

    def to_dict(self):
        return {
            "id": self.id,
            "assignmentId": self.assignment_id,
            "userId": self.user_id,
            "githubUrl": self.github_url,
            "files": self.files or [],
            "grade": self.grade,
            "feedback": self.feedback,
            "submittedAt": iso(self.submitted_at),
            "gradedAt": iso(self.graded_at),
            "assignment": {"id": self.assignment.id, "title": self.assignment.title}
                          if self.assignment else None,
            "user": self.user.brief() if self.user else None,
        }
