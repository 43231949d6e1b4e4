from ..extensions import db
from .common import iso, utcnow

class ForumPost(db.Model):
    __tablename__ = "forum_post"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    tags = db.Column(db.JSON, nullable=False, default=list)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    cohort_id = db.Column(db.Integer, db.ForeignKey("cohort.id"), nullable=False)
    solved = db.Column(db.Boolean, nullable=False, default=False)
    views = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user = db.relationship("User")
    cohort = db.relationship("Cohort", back_populates="forum_posts")
    answers = db.relationship("ForumAnswer", back_populates="post",
                              order_by="ForumAnswer.created_at",
                              cascade="all, delete-orphan")

    def to_dict(self, with_answers=False):
        data = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "tags": self.tags or [],
            "userId": self.user_id,
            "cohortId": self.cohort_id,
            "solved": self.solved,
            "views": self.views,
            "createdAt": iso(self.created_at),
            "user": self.user.brief() if self.user else None,
            "cohort": self.cohort.brief() if self.cohort else None,
            "answerCount": len(self.answers),
        }
        if with_answers:
            data["answers"] = [a.to_dict() for a in self.answers]
        return data

class ForumAnswer(db.Model):
    __tablename__ = "forum_answer"
    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey("forum_post.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    endorsements = db.Column(db.Integer, nullable=False, default=0)
    is_accepted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    post = db.relationship("ForumPost", back_populates="answers")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "postId": self.post_id,
            "userId": self.user_id,
            "content": self.content,
            "endorsements": self.endorsements,
            "isAccepted": self.is_accepted,
            "createdAt": iso(self.created_at),
            "user": self.user.brief() if self.user else None,
        }
