from ..extensions import db
from .common import iso, utcnow

class Badge(db.Model):
    __tablename__ = "badge"
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), unique=True, nullable=False)
    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")
    icon = db.Column(db.String(16))

    def to_dict(self):
        return {"id": self.id, "type": self.type, "name": self.name,
                "description": self.description, "icon": self.icon}

class UserBadge(db.Model):
    __tablename__ = "user_badge"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    badge_id = db.Column(db.Integer, db.ForeignKey("badge.id"), nullable=False)
    earned_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    __table_args__ = (
        db.UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )

    user = db.relationship("User")
    badge = db.relationship("Badge")

    def to_dict(self):
        data = self.badge.to_dict()
        data["earnedAt"] = iso(self.earned_at)
        return data

class UserPoints(db.Model):
    __tablename__ = "user_points"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    total_points = db.Column(db.Integer, nullable=False, default=0)
    assignment_points = db.Column(db.Integer, nullable=False, default=0)
    forum_points = db.Column(db.Integer, nullable=False, default=0)
    attendance_points = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship("User")

class Streak(db.Model):
    __tablename__ = "streak"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    last_activity_date = db.Column(db.Date)

    user = db.relationship("User")
