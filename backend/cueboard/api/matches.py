from datetime import datetime, timezone

from flask import Blueprint, jsonify, request, current_app

from cueboard import db
from cueboard.catalog import balls_payload
from cueboard.errors import ScoreboardError, ValidationError
from cueboard.main import referee_required
from cueboard.models import Match, Profile
from cueboard.services.match_controller import MatchController, as_id
from cueboard.store import load_frame, load_match, match_id_for_event, match_id_for_frame, persist

api = Blueprint('api', __name__)


@api.errorhandler(ScoreboardError)
def handle_scoreboard_error(exc):
    if exc.status_code >= 500:
        current_app.logger.error(f"[api-error] path={request.path} error={exc}")
    return jsonify({'error': str(exc)}), exc.status_code


def _payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _parse_time(value):
    if value in (None, ''):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {value}") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@api.route('/balls', methods=['GET'])
def list_balls():
    return jsonify(balls_payload())


# ---- matches ----

@api.route('/matches', methods=['GET'])
def list_matches():
    matches = Match.query.order_by(Match.id).all()
    return jsonify([match.to_dict(include_frames=False) for match in matches])


@api.route('/matches', methods=['POST'])
@referee_required
def create_match():
    data = _payload()
    player1_id = as_id(data.get('player1_id'), 'player1_id')
    player2_id = as_id(data.get('player2_id'), 'player2_id')
    if player1_id == player2_id:
        raise ValidationError('A match needs two different players')
    for player_id in (player1_id, player2_id):
        if db.session.get(Profile, player_id) is None:
            raise ValidationError(f"Profile {player_id} not found")
    frames_to_win = as_id(data.get('frames_to_win'), 'frames_to_win')
    if frames_to_win < 1:
        raise ValidationError('frames_to_win must be at least 1')

    with persist('create_match'):
        match = Match(
            player1_id=player1_id,
            player2_id=player2_id,
            frames_to_win=frames_to_win,
            scheduled_time=_parse_time(data.get('scheduled_time')),
            broadcast_url=data.get('broadcast_url') or None,
        )
        db.session.add(match)
    current_app.logger.info(f"[match-create] match={match.id} target={frames_to_win}")
    return jsonify(match.to_dict()), 201


@api.route('/matches/<int:match_id>', methods=['GET'])
def get_match(match_id):
    match = load_match(match_id)
    since = request.args.get('since', type=int)
    if since is not None and since >= (match.state_version or 0):
        # Caller is already current; skip the full payload
        return jsonify({'changed': False, 'version': match.state_version or 0})
    return jsonify(match.to_dict())


@api.route('/matches/<int:match_id>', methods=['PUT'])
@referee_required
def update_match(match_id):
    data = _payload()
    match = MatchController(match_id).update_details(
        scheduled_time=_parse_time(data.get('scheduled_time')),
        broadcast_url=data.get('broadcast_url'),
    )
    return jsonify(match.to_dict())


# ---- frames ----

@api.route('/matches/<int:match_id>/frames', methods=['GET'])
def list_frames(match_id):
    match = load_match(match_id)
    return jsonify([frame.to_dict() for frame in match.frames])


@api.route('/matches/<int:match_id>/frames', methods=['POST'])
@referee_required
def create_frame(match_id):
    data = _payload()
    frame = MatchController(match_id).start_frame(data.get('frame_number'))
    return jsonify(frame.to_dict()), 201


@api.route('/frames/<int:frame_id>', methods=['GET'])
def get_frame(frame_id):
    return jsonify(load_frame(frame_id).to_dict())


@api.route('/frames/<int:frame_id>', methods=['PUT'])
@referee_required
def update_frame(frame_id):
    data = _payload()
    controller = MatchController(match_id_for_frame(frame_id))
    frame = None
    if data.get('player1_ball_group') or data.get('player2_ball_group'):
        frame = controller.set_ball_groups(
            data.get('player1_ball_group'),
            data.get('player2_ball_group'),
            frame_id=frame_id,
        )
    if data.get('winner_id') is not None:
        frame = controller.end_frame(frame_id, data['winner_id'])
    if frame is None:
        frame = load_frame(frame_id)
    return jsonify(frame.to_dict())


# ---- events ----

@api.route('/frames/<int:frame_id>/events', methods=['POST'])
@referee_required
def create_event(frame_id):
    data = _payload()
    event_type = data.get('event_type') or data.get('eventType')
    event = MatchController(match_id_for_frame(frame_id)).record_event(
        event_type,
        player_id=data.get('player_id'),
        ball_ids=data.get('ball_ids'),
        details=data.get('details'),
        frame_id=frame_id,
    )
    return jsonify(event.to_dict()), 201


@api.route('/events/<int:event_id>', methods=['DELETE'])
@referee_required
def delete_event(event_id):
    MatchController(match_id_for_event(event_id)).remove_event(event_id)
    return jsonify({'removed': event_id})
