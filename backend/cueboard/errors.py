"""Scoreboard error taxonomy.

Every error raised by the services derives from ``ScoreboardError`` and
carries the HTTP status the REST layer answers with. Socket handlers turn
the same errors into ``{'type': 'error', 'message': ...}`` notifications.
"""


class ScoreboardError(Exception):
    status_code = 500


class ValidationError(ScoreboardError):
    """Malformed or out-of-range input; rejected before any mutation."""
    status_code = 400


class NotFoundError(ScoreboardError):
    status_code = 404


class ConflictError(ScoreboardError):
    """Operation is not valid for the current match or frame state."""
    status_code = 409


class AlreadyFinalizedError(ConflictError):
    def __init__(self, frame_id):
        self.frame_id = frame_id
        super().__init__(f"Frame {frame_id} is already finalized")


class NoActiveFrameError(ConflictError):
    def __init__(self, match_id):
        self.match_id = match_id
        super().__init__(f"Match {match_id} has no active frame")


class MatchCompleteError(ConflictError):
    def __init__(self, match_id):
        self.match_id = match_id
        super().__init__(f"Match {match_id} is already complete")


class TransientIOError(ScoreboardError):
    """Persistence failed or timed out; the caller should refetch and retry."""
    status_code = 503
