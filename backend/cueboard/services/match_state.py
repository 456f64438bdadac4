"""Derived scoreboard state.

Everything here is a pure function of a match-shaped object (``player1_id``,
``player2_id``, ``frames_to_win``, ``frames``), its frames (``frame_number``,
``winner_id``, ``events``) and their events (``event_type``, ``player_id``,
``ball_ids``, ``timestamp``). Nothing is cached; callers recompute on every
read.
"""
from datetime import datetime, timezone
import math

from cueboard.catalog import BALLS_POTTED, OBJECT_BALLS, ball_group

ONGOING = 'ongoing'
PLAYER1_WON = 'player1_won'
PLAYER2_WON = 'player2_won'
DRAW = 'draw'


def wins_for(match, player_id) -> int:
    return sum(
        1 for frame in match.frames
        if frame.winner_id is not None and frame.winner_id == player_id
    )


def frames_needed_to_win(frames_to_win: int) -> int:
    """Wins required for an outright match win.

    Odd targets need a strict majority. Even targets need one more than half;
    reaching exactly half each is a draw (see ``is_match_over``).
    """
    if frames_to_win % 2:
        return math.ceil(frames_to_win / 2)
    return frames_to_win // 2 + 1


def is_match_over(match) -> bool:
    needed = frames_needed_to_win(match.frames_to_win)
    p1 = wins_for(match, match.player1_id)
    p2 = wins_for(match, match.player2_id)
    even_target = match.frames_to_win % 2 == 0
    return p1 >= needed or p2 >= needed or (even_target and p1 + p2 >= match.frames_to_win)


def match_outcome(match) -> str:
    if not is_match_over(match):
        return ONGOING
    needed = frames_needed_to_win(match.frames_to_win)
    if wins_for(match, match.player1_id) >= needed:
        return PLAYER1_WON
    if wins_for(match, match.player2_id) >= needed:
        return PLAYER2_WON
    return DRAW


def _ordered_frames(match):
    return sorted(match.frames, key=lambda frame: frame.frame_number)


def current_frame(match):
    for frame in _ordered_frames(match):
        if frame.winner_id is None:
            return frame
    return None


def current_player_id(frame, match):
    """Player whose turn it is in ``frame``.

    The last event carrying an attributed player decides; a frame without
    such an event always opens on player1.
    """
    for event in reversed(list(frame.events)):
        if event.player_id is not None:
            return event.player_id
    return match.player1_id


def potted_balls(frame):
    potted = []
    for event in frame.events:
        if event.event_type != BALLS_POTTED:
            continue
        for ball_id in event.ball_ids or []:
            if ball_id not in potted:
                potted.append(ball_id)
    return potted


def remaining_balls(frame, group=None):
    """Object balls still on the table, optionally limited to one group."""
    potted = set(potted_balls(frame))
    return [
        ball_id for ball_id in OBJECT_BALLS
        if ball_id not in potted and (group is None or ball_group(ball_id) == group)
    ]


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def match_elapsed_seconds(match, now=None):
    """Match clock in whole seconds.

    Starts at the first event of frame 1 (falling back to the scheduled time)
    and freezes at the last event of the last finished frame once the match
    is over.
    """
    frames = _ordered_frames(match)
    first = next((frame for frame in frames if frame.frame_number == 1), None)
    start = first.events[0].timestamp if first is not None and first.events else None
    start = start or getattr(match, 'scheduled_time', None)
    if start is None:
        return None
    end = now or _utcnow()
    if is_match_over(match):
        finished = [frame for frame in frames if frame.winner_id is not None]
        if finished and finished[-1].events:
            end = finished[-1].events[-1].timestamp
    return max(0, int((end - start).total_seconds()))


def build_view(match, now=None) -> dict:
    frame = current_frame(match)
    view = {
        'player1_wins': wins_for(match, match.player1_id),
        'player2_wins': wins_for(match, match.player2_id),
        'frames_needed_to_win': frames_needed_to_win(match.frames_to_win),
        'is_match_over': is_match_over(match),
        'outcome': match_outcome(match),
        'elapsed_seconds': match_elapsed_seconds(match, now),
        'current_frame_id': None,
        'current_frame_number': None,
        'next_frame_number': len(match.frames) + 1,
        'current_player_id': None,
        'potted_balls': [],
        'remaining_balls': [],
        'player1_remaining_balls': [],
        'player2_remaining_balls': [],
    }
    if frame is not None:
        view.update({
            'current_frame_id': frame.id,
            'current_frame_number': frame.frame_number,
            'current_player_id': current_player_id(frame, match),
            'potted_balls': potted_balls(frame),
            'remaining_balls': remaining_balls(frame),
        })
        if frame.player1_ball_group:
            view['player1_remaining_balls'] = remaining_balls(frame, frame.player1_ball_group)
        if frame.player2_ball_group:
            view['player2_remaining_balls'] = remaining_balls(frame, frame.player2_ball_group)
    return view
