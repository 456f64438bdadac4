from datetime import datetime, timedelta, timezone

from cueboard.catalog import (
    BALLS,
    BALLS_POTTED,
    CUE_BALL,
    CUE_BALL_LEFT_TABLE,
    CUE_BALL_POSITIONED,
    EVENT_TYPES,
    FOUL,
    NEXT_PLAYER,
)
from cueboard.errors import AlreadyFinalizedError, NotFoundError, ValidationError, ConflictError
from cueboard.models import MatchEvent
from cueboard.services import match_state


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FrameSession:
    """Validated mutation of one frame's event log.

    The session only touches the ORM objects; committing (and therefore
    atomicity against the store) belongs to the caller, normally
    ``MatchController`` inside ``store.persist``.
    """

    def __init__(self, frame, clock=_utcnow):
        self.frame = frame
        self._clock = clock

    @property
    def is_active(self):
        return self.frame.winner_id is None

    def _require_active(self):
        if not self.is_active:
            raise AlreadyFinalizedError(self.frame.id)

    def _require_player(self, player_id):
        if player_id is None:
            raise ValidationError('player_id is required')
        match = self.frame.match
        if match is not None and player_id not in (match.player1_id, match.player2_id):
            raise ValidationError(f"Player {player_id} does not play in this match")

    def _next_timestamp(self):
        timestamp = self._clock()
        events = self.frame.events
        if events and events[-1].timestamp is not None and timestamp <= events[-1].timestamp:
            # Keep the log strictly time-ordered even on coarse clocks
            timestamp = events[-1].timestamp + timedelta(microseconds=1)
        return timestamp

    def _append(self, event_type, player_id=None, ball_ids=None, details=None):
        self._require_active()
        if details is not None and not isinstance(details, str):
            raise ValidationError('details must be a string')
        event = MatchEvent(
            event_type=event_type,
            timestamp=self._next_timestamp(),
            player_id=player_id,
            details=details,
        )
        event.ball_ids = ball_ids
        self.frame.events.append(event)
        return event

    def assign_ball_groups(self, player1_group, player2_group):
        self._require_active()
        self.frame.player1_ball_group = player1_group
        self.frame.player2_ball_group = player2_group

    def record_balls_potted(self, player_id, ball_ids, details=None):
        self._require_active()
        self._require_player(player_id)
        ball_ids = [str(ball_id) for ball_id in (ball_ids or [])]
        if not ball_ids:
            raise ValidationError('ball_ids must not be empty')
        unknown = [ball_id for ball_id in ball_ids if ball_id not in BALLS]
        if unknown:
            raise ValidationError(f"Unknown ball id(s): {', '.join(unknown)}")
        if len(set(ball_ids)) != len(ball_ids):
            raise ValidationError('ball_ids must not repeat a ball')
        already = set(match_state.potted_balls(self.frame))
        repeated = [b for b in ball_ids if b != CUE_BALL and b in already]
        if repeated:
            raise ConflictError(f"Ball(s) already potted in this frame: {', '.join(repeated)}")
        return self._append(BALLS_POTTED, player_id, ball_ids, details)

    def record_foul(self, player_id, details=None):
        self._require_player(player_id)
        return self._append(FOUL, player_id, details=details)

    def record_cue_ball_left_table(self, player_id, details=None):
        self._require_player(player_id)
        return self._append(CUE_BALL_LEFT_TABLE, player_id, details=details)

    def record_cue_ball_positioned(self, player_id, details=None):
        self._require_player(player_id)
        return self._append(CUE_BALL_POSITIONED, player_id, details=details)

    def switch_player(self):
        """Hand the turn to the other player with a ``next_player`` event."""
        match = self.frame.match
        current = match_state.current_player_id(self.frame, match)
        incoming = match.player2_id if current == match.player1_id else match.player1_id
        return self._append(NEXT_PLAYER, incoming)

    def record_event(self, event_type, player_id=None, ball_ids=None, details=None):
        if event_type not in EVENT_TYPES:
            raise ValidationError(f"Unknown event type: {event_type}")
        if event_type == BALLS_POTTED:
            return self.record_balls_potted(player_id, ball_ids, details)
        if ball_ids:
            raise ValidationError(f"ball_ids are only accepted for {BALLS_POTTED} events")
        if player_id is not None:
            self._require_player(player_id)
        return self._append(event_type, player_id, details=details)

    def undo_last_event(self):
        """Drop the most recent event; returns it, or None on an empty log."""
        if not self.frame.events:
            return None
        return self.frame.events.pop()

    def remove_event(self, event_id):
        for event in self.frame.events:
            if event.id == event_id:
                self.frame.events.remove(event)
                return event
        raise NotFoundError(f"Event {event_id} not found in frame {self.frame.id}")

    def clear_all_events(self) -> int:
        count = len(self.frame.events)
        del self.frame.events[:]
        return count

    def finalize(self, winner_id):
        if not self.is_active:
            raise AlreadyFinalizedError(self.frame.id)
        self.frame.winner_id = winner_id
        self.frame.finished_at = self._clock()
