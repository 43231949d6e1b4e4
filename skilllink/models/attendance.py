from ..extensions import db
from .common import iso, utcnow

PRESENT = "PRESENT"
ABSENT = "ABSENT"
LATE = "LATE"
EXCUSED = "EXCUSED"
ATTENDANCE_STATUSES = (PRESENT, ABSENT, LATE, EXCUSED)

class Attendance(db.Model):
    __tablename__ = "attendance"
    id = db.Column(db.Integer, primary_key=True)
    cohort_id = db.Column(db.Integer, db.ForeignKey("cohort.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.String(255))
    marked_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    __table_args__ = (
        db.UniqueConstraint("cohort_id", "user_id", "date", name="uq_attendance_day"),
    )

    cohort = db.relationship("Cohort")
    user = db.relationship("User", foreign_keys=[user_id])
    marked_by = db.relationship("User", foreign_keys=[marked_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "cohortId": self.cohort_id,
            "userId": self.user_id,
            "date": iso(self.date),
            "status": self.status,
            "notes": self.notes,
            "user": self.user.brief() if self.user else None,
            "cohort": self.cohort.brief() if self.cohort else None,
        }
