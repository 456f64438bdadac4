from datetime import datetime, timezone
import json

from flask_login import UserMixin

from cueboard import db, bcrypt
from cueboard.services import match_state


def utcnow():
    # Naive UTC: SQLite drops tzinfo on the way back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    is_referee = db.Column(db.Boolean, default=False, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'is_referee': self.is_referee,
        }


class Profile(db.Model):
    __tablename__ = 'profile'
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(64), nullable=False)
    last_name = db.Column(db.String(64), nullable=False)
    picture_url = db.Column(db.String(512), nullable=True)

    @property
    def display_name(self):
        return f"{self.last_name} {self.first_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'display_name': self.display_name,
            'picture_url': self.picture_url,
        }


class Match(db.Model):
    __tablename__ = 'match'
    id = db.Column(db.Integer, primary_key=True)
    player1_id = db.Column(db.Integer, db.ForeignKey('profile.id'), nullable=False)
    player2_id = db.Column(db.Integer, db.ForeignKey('profile.id'), nullable=False)
    frames_to_win = db.Column(db.Integer, nullable=False)
    scheduled_time = db.Column(db.DateTime, nullable=True)
    broadcast_url = db.Column(db.String(512), nullable=True)
    # Bumped on every accepted mutation so subscribers can detect staleness
    state_version = db.Column(db.Integer, default=0, nullable=False)
    # Set once, when completion is first signalled
    outcome = db.Column(db.String(16), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    player1 = db.relationship('Profile', foreign_keys=[player1_id])
    player2 = db.relationship('Profile', foreign_keys=[player2_id])
    frames = db.relationship(
        'Frame',
        back_populates='match',
        order_by='Frame.frame_number',
        cascade='all, delete-orphan',
    )

    def player_ids(self):
        return (self.player1_id, self.player2_id)

    def to_dict(self, include_frames=True):
        data = {
            'id': self.id,
            'player1': self.player1.to_dict() if self.player1 else None,
            'player2': self.player2.to_dict() if self.player2 else None,
            'frames_to_win': self.frames_to_win,
            'scheduled_time': _iso(self.scheduled_time),
            'broadcast_url': self.broadcast_url,
            'version': self.state_version or 0,
            'outcome': self.outcome,
            'completed_at': _iso(self.completed_at),
        }
        if include_frames:
            data['frames'] = [frame.to_dict() for frame in self.frames]
            data['view'] = match_state.build_view(self)
        return data


class Frame(db.Model):
    __tablename__ = 'frame'
    __table_args__ = (
        db.UniqueConstraint('match_id', 'frame_number', name='uq_frame_match_number'),
    )
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False, index=True)
    frame_number = db.Column(db.Integer, nullable=False)
    winner_id = db.Column(db.Integer, db.ForeignKey('profile.id'), nullable=True)
    player1_ball_group = db.Column(db.String(16), nullable=True)
    player2_ball_group = db.Column(db.String(16), nullable=True)
    started_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    finished_at = db.Column(db.DateTime, nullable=True)

    match = db.relationship('Match', back_populates='frames')
    winner = db.relationship('Profile', foreign_keys=[winner_id])
    events = db.relationship(
        'MatchEvent',
        back_populates='frame',
        order_by=lambda: [MatchEvent.timestamp, MatchEvent.id],
        cascade='all, delete-orphan',
    )

    def to_dict(self):
        return {
            'id': self.id,
            'match_id': self.match_id,
            'frame_number': self.frame_number,
            'winner_id': self.winner_id,
            'winner': self.winner.to_dict() if self.winner else None,
            'player1_ball_group': self.player1_ball_group,
            'player2_ball_group': self.player2_ball_group,
            'started_at': _iso(self.started_at),
            'finished_at': _iso(self.finished_at),
            'events': [event.to_dict() for event in self.events],
        }


class MatchEvent(db.Model):
    __tablename__ = 'match_event'
    id = db.Column(db.Integer, primary_key=True)
    frame_id = db.Column(db.Integer, db.ForeignKey('frame.id'), nullable=False, index=True)
    event_type = db.Column(db.String(32), nullable=False)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('profile.id'), nullable=True)
    ball_ids_json = db.Column('ball_ids', db.Text, nullable=True)  # JSON-encoded list of ball ids
    details = db.Column(db.Text, nullable=True)

    frame = db.relationship('Frame', back_populates='events')
    player = db.relationship('Profile', foreign_keys=[player_id])

    @property
    def ball_ids(self):
        return json.loads(self.ball_ids_json) if self.ball_ids_json else []

    @ball_ids.setter
    def ball_ids(self, value):
        self.ball_ids_json = json.dumps(list(value)) if value else None

    def to_dict(self):
        return {
            'id': self.id,
            'frame_id': self.frame_id,
            'event_type': self.event_type,
            'timestamp': _iso(self.timestamp),
            'player_id': self.player_id,
            'ball_ids': self.ball_ids,
            'details': self.details,
        }
