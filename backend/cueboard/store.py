"""Event store access: loading aggregates and committing them atomically."""
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from cueboard import db
from cueboard.errors import NotFoundError, TransientIOError
from cueboard.models import Frame, Match, MatchEvent


@contextmanager
def persist(action: str):
    """Commit everything done inside the block, or nothing.

    Database failures are rolled back and surfaced as ``TransientIOError`` so
    the in-memory objects never drift from the durable record. Any other
    exception rolls back and propagates unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[persist-failed] action={action} error={exc}")
        raise TransientIOError(f"Could not persist {action}, refetch state and retry") from exc
    except Exception:
        db.session.rollback()
        raise


def load_match(match_id, for_update=False) -> Match:
    query = Match.query.filter_by(id=match_id)
    if for_update:
        # Row lock where the database supports it (ignored by SQLite)
        query = query.with_for_update().populate_existing()
    try:
        match = query.first()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransientIOError(f"Could not load match {match_id}") from exc
    if match is None:
        raise NotFoundError(f"Match {match_id} not found")
    return match


def _scalar(query, label, object_id):
    try:
        match_id = query.scalar()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransientIOError(f"Could not load {label} {object_id}") from exc
    if match_id is None:
        raise NotFoundError(f"{label.capitalize()} {object_id} not found")
    return match_id


def match_id_for_frame(frame_id):
    """Owning match id, without loading the frame into the session."""
    query = db.session.query(Frame.match_id).filter(Frame.id == frame_id)
    return _scalar(query, 'frame', frame_id)


def match_id_for_event(event_id):
    query = (
        db.session.query(Frame.match_id)
        .join(MatchEvent, MatchEvent.frame_id == Frame.id)
        .filter(MatchEvent.id == event_id)
    )
    return _scalar(query, 'event', event_id)


def load_frame(frame_id) -> Frame:
    frame = db.session.get(Frame, frame_id)
    if frame is None:
        raise NotFoundError(f"Frame {frame_id} not found")
    return frame
