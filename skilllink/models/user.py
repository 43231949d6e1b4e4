from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash
from ..extensions import db
from .common import iso, utcnow

ADMIN = "ADMIN"
FACILITATOR = "FACILITATOR"
STUDENT = "STUDENT"
ROLES = (ADMIN, FACILITATOR, STUDENT)

class User(UserMixin, db.Model):
    __tablename__ = "user"
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=STUDENT)
    avatar = db.Column(db.String(512))
    bio = db.Column(db.Text)
    access_code = db.Column(db.String(6))     # facilitators only
    is_active_flag = db.Column("is_active", db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    memberships = db.relationship("CohortUser", back_populates="user",
                                  cascade="all, delete-orphan")
    refresh_tokens = db.relationship("RefreshToken", back_populates="user",
                                     cascade="all, delete-orphan")

    # Flask-Login reads is_active to refuse disabled accounts
    @property
    def is_active(self):
        return self.is_active_flag

    def set_password(self, pw):
        self.password_hash = generate_password_hash(pw)

    def check_password(self, pw):
        return check_password_hash(self.password_hash, pw)

    def brief(self):
        return {"id": self.id, "name": self.name, "email": self.email, "avatar": self.avatar}

    def to_dict(self, include_code=False):
        data = {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "avatar": self.avatar,
            "bio": self.bio,
            "isActive": self.is_active_flag,
            "createdAt": iso(self.created_at),
        }
        if include_code:
            data["accessCode"] = self.access_code
        return data

class RefreshToken(db.Model):
    __tablename__ = "refresh_token"
    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(512), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user = db.relationship("User", back_populates="refresh_tokens")

class ActivityLog(db.Model):
    __tablename__ = "activity_log"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"))
    action = db.Column(db.String(64), nullable=False, index=True)
    details = db.Column("metadata", db.JSON)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    user = db.relationship("User")
