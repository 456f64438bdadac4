"""Match lifecycle: one serialized writer per match.

States: no_active_frame -> frame_active -> (finalizing) -> no_active_frame
or match_complete. Every command runs validate -> mutate -> persist ->
publish while holding the match's lock, so referee actions on the same match
never interleave. Nothing derived is cached between commands; each one
reloads the match from the store.
"""
from contextlib import contextmanager
import threading
import weakref

from flask import current_app

from cueboard import broadcaster, db
from cueboard.catalog import BALL_GROUPS
from cueboard.errors import (
    AlreadyFinalizedError,
    ConflictError,
    MatchCompleteError,
    NoActiveFrameError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from cueboard.models import Frame, utcnow
from cueboard.services import match_state
from cueboard.services.frame_session import FrameSession
from cueboard.store import load_match, persist

NO_ACTIVE_FRAME = 'no_active_frame'
FRAME_ACTIVE = 'frame_active'
MATCH_COMPLETE = 'match_complete'

# Entries live only while some command holds or waits on the lock
_match_locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_match_locks_guard = threading.Lock()


def _lock_for(match_id) -> threading.Lock:
    with _match_locks_guard:
        lock = _match_locks.get(match_id)
        if lock is None:
            lock = threading.Lock()
            _match_locks[match_id] = lock
        return lock


def as_id(value, field):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer id") from None


def match_status(match) -> str:
    if match_state.is_match_over(match):
        return MATCH_COMPLETE
    if match_state.current_frame(match) is not None:
        return FRAME_ACTIVE
    return NO_ACTIVE_FRAME


class MatchController:

    def __init__(self, match_id, publisher=None):
        self.match_id = as_id(match_id, 'match_id')
        self.publisher = publisher or broadcaster
        self._pending = []

    @contextmanager
    def _command(self, action):
        lock = _lock_for(self.match_id)
        timeout = float(current_app.config.get('COMMAND_LOCK_TIMEOUT_SEC', 5))
        if not lock.acquire(timeout=timeout):
            raise TransientIOError(f"Match {self.match_id} is busy, retry {action}")
        try:
            self._pending = []
            # Drop anything read before the lock was taken
            db.session.expire_all()
            with persist(action):
                match = load_match(self.match_id, for_update=True)
                yield match
            self._flush(match)
        finally:
            self._pending = []
            lock.release()

    def _changed(self, match, notification_type, data=None):
        if not self._pending:
            match.state_version = (match.state_version or 0) + 1
        self._pending.append((notification_type, data))

    def _flush(self, match):
        if not self._pending:
            return
        view = match.to_dict()
        for notification_type, data in self._pending:
            self.publisher.publish(
                self.match_id,
                notification_type,
                data=data,
                version=view['version'],
                view=view,
            )

    def _frame_of(self, match, frame_id) -> Frame:
        frame_id = as_id(frame_id, 'frame_id')
        for frame in match.frames:
            if frame.id == frame_id:
                return frame
        raise NotFoundError(f"Frame {frame_id} not found in match {match.id}")

    def _frame_of_event(self, match, event_id) -> Frame:
        for frame in match.frames:
            if any(event.id == event_id for event in frame.events):
                return frame
        raise NotFoundError(f"Event {event_id} not found in match {match.id}")

    def _active_session(self, match, frame_id=None) -> FrameSession:
        frame = match_state.current_frame(match)
        if frame is None:
            raise NoActiveFrameError(match.id)
        if frame_id is not None:
            requested = self._frame_of(match, frame_id)
            if requested.id != frame.id:
                raise AlreadyFinalizedError(requested.id)
        return FrameSession(frame)

    # ---- queries ----

    def status(self) -> str:
        return match_status(load_match(self.match_id))

    def state(self) -> dict:
        return load_match(self.match_id).to_dict()

    # ---- frame lifecycle ----

    def start_frame(self, frame_number=None) -> Frame:
        with self._command('start_frame') as match:
            if match_state.is_match_over(match):
                raise MatchCompleteError(match.id)
            active = match_state.current_frame(match)
            if active is not None:
                raise ConflictError(f"Frame {active.frame_number} is still active")
            next_number = len(match.frames) + 1
            if frame_number is not None and as_id(frame_number, 'frame_number') != next_number:
                raise ConflictError(f"Frame {frame_number} cannot start, next frame is {next_number}")
            frame = Frame(frame_number=next_number)
            match.frames.append(frame)
            self._changed(match, 'frame_started', {'frame_number': next_number})
        current_app.logger.info(f"[frame-start] match={self.match_id} frame={frame.id} number={next_number}")
        return frame

    def end_frame(self, frame_id, winner_id) -> Frame:
        with self._command('end_frame') as match:
            frame = self._frame_of(match, frame_id)
            if frame.winner_id is not None:
                raise AlreadyFinalizedError(frame.id)
            winner_id = as_id(winner_id, 'winner_id')
            if winner_id not in match.player_ids():
                raise ValidationError(f"Winner {winner_id} does not play in match {match.id}")
            FrameSession(frame).finalize(winner_id)
            self._changed(match, 'frame_ended', {'frame_id': frame.id, 'winner_id': winner_id})
            completed = match_state.is_match_over(match) and match.outcome is None
            if completed:
                # Persisted with the frame so the signal fires once per match
                match.outcome = match_state.match_outcome(match)
                match.completed_at = utcnow()
                self._changed(match, 'match_ended', {'outcome': match.outcome})
        current_app.logger.info(f"[frame-end] match={self.match_id} frame={frame.id} winner={winner_id}")
        if completed:
            current_app.logger.info(f"[match-complete] match={self.match_id} outcome={match.outcome}")
        return frame

    def set_ball_groups(self, player1_group, player2_group, frame_id=None) -> Frame:
        if player1_group not in BALL_GROUPS or player2_group not in BALL_GROUPS:
            raise ValidationError(f"Ball groups must be one of {', '.join(BALL_GROUPS)}")
        if player1_group == player2_group:
            raise ValidationError('Players must get complementary ball groups')
        with self._command('set_ball_groups') as match:
            session = self._active_session(match, frame_id)
            session.assign_ball_groups(player1_group, player2_group)
            self._changed(match, 'ball_groups_set', {
                'frame_id': session.frame.id,
                'player1_ball_group': player1_group,
                'player2_ball_group': player2_group,
            })
        return session.frame

    # ---- events ----

    def record_event(self, event_type, player_id=None, ball_ids=None, details=None, frame_id=None):
        if player_id is not None:
            player_id = as_id(player_id, 'player_id')
        if ball_ids is not None and not isinstance(ball_ids, (list, tuple)):
            raise ValidationError('ball_ids must be a list')
        if details is not None and not isinstance(details, str):
            raise ValidationError('details must be a string')
        with self._command('record_event') as match:
            session = self._active_session(match, frame_id)
            event = session.record_event(event_type, player_id, ball_ids, details)
            db.session.flush()
            self._changed(match, 'event_created', {'event_id': event.id, 'event_type': event_type})
        return event

    def switch_player(self, frame_id=None):
        with self._command('switch_player') as match:
            session = self._active_session(match, frame_id)
            event = session.switch_player()
            db.session.flush()
            self._changed(match, 'event_created', {'event_id': event.id, 'event_type': event.event_type})
        return event

    def remove_event(self, event_id):
        event_id = as_id(event_id, 'event_id')
        with self._command('remove_event') as match:
            if match_state.current_frame(match) is None:
                raise NoActiveFrameError(match.id)
            owner = self._frame_of_event(match, event_id)
            if owner.winner_id is not None:
                raise AlreadyFinalizedError(owner.id)
            FrameSession(owner).remove_event(event_id)
            self._changed(match, 'event_removed', {'event_id': event_id})
        current_app.logger.info(f"[event-removed] match={self.match_id} event={event_id}")
        return event_id

    def remove_events(self, event_ids) -> int:
        if not isinstance(event_ids, (list, tuple)) or not event_ids:
            raise ValidationError('event_ids must be a non-empty list')
        event_ids = [as_id(event_id, 'event_id') for event_id in event_ids]
        with self._command('remove_events') as match:
            session = self._active_session(match)
            known = {event.id for event in session.frame.events}
            missing = [str(event_id) for event_id in event_ids if event_id not in known]
            if missing:
                raise NotFoundError(f"Event(s) not found in the active frame: {', '.join(missing)}")
            for event_id in dict.fromkeys(event_ids):
                session.remove_event(event_id)
            count = len(set(event_ids))
            self._changed(match, 'events_removed', {'count': count})
        return count

    def undo_last_event(self, frame_id=None):
        with self._command('undo_last_event') as match:
            session = self._active_session(match, frame_id)
            event = session.undo_last_event()
            removed_id = event.id if event is not None else None
            if event is not None:
                self._changed(match, 'event_removed', {'event_id': removed_id})
        if removed_id is not None:
            current_app.logger.info(f"[event-undo] match={self.match_id} event={removed_id}")
        return removed_id

    def clear_frame_events(self, frame_id=None) -> int:
        with self._command('clear_frame_events') as match:
            session = self._active_session(match, frame_id)
            count = session.clear_all_events()
            self._changed(match, 'frame_events_cleared', {'frame_id': session.frame.id, 'count': count})
        current_app.logger.info(f"[frame-clear] match={self.match_id} frame={session.frame.id} count={count}")
        return count

    # ---- match details ----

    def update_details(self, scheduled_time=None, broadcast_url=None):
        with self._command('update_match') as match:
            if scheduled_time is not None:
                match.scheduled_time = scheduled_time
            if broadcast_url is not None:
                match.broadcast_url = broadcast_url or None
            self._changed(match, 'match_updated')
        return match
