from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from enum import Enum

db = SQLAlchemy()


class Mood(str, Enum):
    HAPPY = "happy"
    SAD = "sad"
    ANXIOUS = "anxious"
    EXCITED = "excited"
    CALM = "calm"
    FRUSTRATED = "frustrated"
    GRATEFUL = "grateful"
    REFLECTIVE = "reflective"
    ENERGETIC = "energetic"
    PEACEFUL = "peaceful"


MOOD_LABELS = [m.value for m in Mood]


def _iso(ts):
    return ts.isoformat() + "Z" if ts else None


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    # The only credential; see auth.py for how it maps to a session.
    login_code = db.Column(db.String(20), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "loginCode": self.login_code,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User id={self.id}>"


class JournalEntry(db.Model):
    __tablename__ = "journal_entries"

    id = db.Column(db.Integer, primary_key=True)
    # Nullable only for rows written before accounts existed.
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    content = db.Column(db.Text, nullable=False)
    summary = db.Column(db.Text, nullable=False)

    mood = db.Column(db.String(50), nullable=False)       # e.g., "reflective"
    mood_score = db.Column(db.Float, nullable=True)       # VADER compound, e.g. 0.56

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "content": self.content,
            "summary": self.summary,
            "mood": self.mood,
            "moodScore": float(self.mood_score) if self.mood_score is not None else None,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<JournalEntry id={self.id} user_id={self.user_id}>"
