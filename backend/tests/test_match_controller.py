import gc

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from cueboard import db
from cueboard.errors import (
    AlreadyFinalizedError,
    ConflictError,
    MatchCompleteError,
    NoActiveFrameError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from cueboard.models import Frame, Match, MatchEvent
from cueboard.services.match_controller import (
    FRAME_ACTIVE,
    MATCH_COMPLETE,
    NO_ACTIVE_FRAME,
    MatchController,
    _lock_for,
    _match_locks,
)


@pytest.fixture()
def controller(seeded, publisher):
    return MatchController(seeded['match_id'], publisher=publisher)


def test_status_moves_through_the_lifecycle(controller, seeded):
    assert controller.status() == NO_ACTIVE_FRAME
    frame = controller.start_frame()
    assert frame.frame_number == 1
    assert controller.status() == FRAME_ACTIVE
    controller.end_frame(frame.id, seeded['player1_id'])
    assert controller.status() == NO_ACTIVE_FRAME


def test_start_frame_rejects_while_a_frame_is_active(controller):
    controller.start_frame()
    with pytest.raises(ConflictError):
        controller.start_frame()


def test_start_frame_rejects_stale_frame_number(controller, seeded):
    frame = controller.start_frame(1)
    controller.end_frame(frame.id, seeded['player2_id'])
    with pytest.raises(ConflictError):
        controller.start_frame(1)
    assert controller.start_frame(2).frame_number == 2


def test_end_frame_twice_is_rejected(controller, seeded, publisher):
    frame = controller.start_frame()
    controller.end_frame(frame.id, seeded['player1_id'])
    published = len(publisher.published)
    with pytest.raises(AlreadyFinalizedError):
        controller.end_frame(frame.id, seeded['player2_id'])
    assert len(publisher.published) == published
    assert db.session.get(Match, seeded['match_id']).frames[0].winner_id == seeded['player1_id']


def test_end_frame_rejects_outsider_and_unknown_frame(controller):
    frame = controller.start_frame()
    with pytest.raises(ValidationError):
        controller.end_frame(frame.id, 9999)
    with pytest.raises(NotFoundError):
        controller.end_frame(frame.id + 100, 1)


def test_best_of_three_completes_once(controller, seeded, publisher):
    p1, p2 = seeded['player1_id'], seeded['player2_id']
    for winner in (p1, p2, p1):
        frame = controller.start_frame()
        controller.end_frame(frame.id, winner)

    assert controller.status() == MATCH_COMPLETE
    assert publisher.types().count('match_ended') == 1
    ended = [item for item in publisher.published if item['type'] == 'match_ended'][0]
    assert ended['data'] == {'outcome': 'player1_won'}

    match = db.session.get(Match, seeded['match_id'])
    assert match.outcome == 'player1_won'
    assert match.completed_at is not None
    with pytest.raises(MatchCompleteError):
        controller.start_frame()


def test_even_target_can_end_in_a_draw(seeded, publisher):
    match = db.session.get(Match, seeded['match_id'])
    match.frames_to_win = 4
    db.session.commit()
    controller = MatchController(match.id, publisher=publisher)
    p1, p2 = seeded['player1_id'], seeded['player2_id']
    for winner in (p1, p2, p1):
        frame = controller.start_frame()
        controller.end_frame(frame.id, winner)
    assert controller.status() == NO_ACTIVE_FRAME

    frame = controller.start_frame()
    controller.end_frame(frame.id, p2)
    assert controller.status() == MATCH_COMPLETE
    assert controller.state()['view']['outcome'] == 'draw'


def test_every_command_bumps_version_once(controller, seeded, publisher):
    frame = controller.start_frame()
    controller.record_event('balls_potted', seeded['player1_id'], ['1'])
    controller.end_frame(frame.id, seeded['player1_id'])
    versions = [item['version'] for item in publisher.published]
    assert versions == [1, 2, 3]
    assert controller.state()['version'] == 3


def test_completion_shares_the_frame_end_version(seeded, publisher):
    match = db.session.get(Match, seeded['match_id'])
    match.frames_to_win = 1
    db.session.commit()
    controller = MatchController(match.id, publisher=publisher)
    frame = controller.start_frame()
    controller.end_frame(frame.id, seeded['player2_id'])
    assert publisher.types() == ['frame_started', 'frame_ended', 'match_ended']
    assert publisher.published[1]['version'] == publisher.published[2]['version'] == 2


def test_commands_without_active_frame(controller):
    with pytest.raises(NoActiveFrameError):
        controller.record_event('faul', 1)
    with pytest.raises(NoActiveFrameError):
        controller.switch_player()
    with pytest.raises(NoActiveFrameError):
        controller.undo_last_event()


def test_event_on_finished_frame_is_rejected(controller, seeded):
    frame = controller.start_frame()
    controller.end_frame(frame.id, seeded['player1_id'])
    controller.start_frame()
    with pytest.raises(AlreadyFinalizedError):
        controller.record_event('faul', seeded['player1_id'], frame_id=frame.id)


def test_empty_pot_leaves_no_trace(controller, seeded, publisher):
    controller.start_frame()
    before = len(publisher.published)
    with pytest.raises(ValidationError):
        controller.record_event('balls_potted', seeded['player1_id'], [])
    assert MatchEvent.query.count() == 0
    assert len(publisher.published) == before
    assert controller.state()['version'] == 1


def test_record_and_switch_drive_current_player(controller, seeded, publisher):
    p1, p2 = seeded['player1_id'], seeded['player2_id']
    controller.start_frame()
    assert controller.state()['view']['current_player_id'] == p1
    event = controller.switch_player()
    assert event.player_id == p2
    controller.record_event('balls_potted', p2, ['9', '10'])
    view = controller.state()['view']
    assert view['current_player_id'] == p2
    assert view['potted_balls'] == ['9', '10']
    assert publisher.types().count('event_created') == 2
    assert publisher.published[-1]['data']['event_type'] == 'balls_potted'


def test_undo_remove_and_clear(controller, seeded, publisher):
    p1 = seeded['player1_id']
    frame = controller.start_frame()
    first = controller.record_event('balls_potted', p1, ['2'])
    second = controller.record_event('faul', p1)
    third = controller.record_event('cue_ball_left_table', p1)
    first_id, second_id, third_id = first.id, second.id, third.id

    assert controller.undo_last_event(frame.id) == third_id
    assert controller.remove_event(first_id) == first_id
    with pytest.raises(NotFoundError):
        controller.remove_event(first_id)
    assert [e['id'] for e in controller.state()['frames'][0]['events']] == [second_id]

    assert controller.clear_frame_events() == 1
    assert controller.state()['frames'][0]['events'] == []
    assert 'frame_events_cleared' in publisher.types()


def test_undo_on_empty_log_is_silent(controller, publisher):
    controller.start_frame()
    published = len(publisher.published)
    assert controller.undo_last_event() is None
    assert len(publisher.published) == published


def test_remove_events_is_all_or_nothing(controller, seeded):
    p1 = seeded['player1_id']
    controller.start_frame()
    first = controller.record_event('faul', p1)
    second = controller.record_event('faul', p1)
    with pytest.raises(NotFoundError):
        controller.remove_events([first.id, 4242])
    assert MatchEvent.query.count() == 2
    assert controller.remove_events([first.id, second.id]) == 2
    assert MatchEvent.query.count() == 0
    with pytest.raises(ValidationError):
        controller.remove_events([])


def test_ball_groups_must_be_complementary(controller):
    controller.start_frame()
    with pytest.raises(ValidationError):
        controller.set_ball_groups('full', 'full')
    with pytest.raises(ValidationError):
        controller.set_ball_groups('full', 'spots')
    frame = controller.set_ball_groups('striped', 'full')
    assert frame.player1_ball_group == 'striped'
    assert len(controller.state()['view']['player1_remaining_balls']) == 7


def test_busy_match_raises_transient_error(controller):
    lock = _lock_for(controller.match_id)
    lock.acquire()
    try:
        with pytest.raises(TransientIOError):
            controller.start_frame()
    finally:
        lock.release()


def test_update_details(controller, publisher):
    match = controller.update_details(broadcast_url='https://example.com/live')
    assert match.broadcast_url == 'https://example.com/live'
    assert publisher.types() == ['match_updated']


def test_non_string_details_are_rejected_before_mutation(controller, seeded, publisher):
    controller.start_frame()
    with pytest.raises(ValidationError):
        controller.record_event('faul', seeded['player1_id'], details={'note': 'kiss'})
    assert MatchEvent.query.count() == 0
    assert publisher.types() == ['frame_started']
    event = controller.record_event('faul', seeded['player1_id'], details='touched the 8')
    assert event.details == 'touched the 8'


def test_remove_middle_event_keeps_order(controller, seeded):
    p1, p2 = seeded['player1_id'], seeded['player2_id']
    controller.start_frame()
    ids = [
        controller.record_event('balls_potted', p1, ['1']).id,
        controller.record_event('faul', p1).id,
        controller.record_event('next_player', p2).id,
        controller.record_event('balls_potted', p2, ['12']).id,
    ]
    controller.remove_event(ids[1])
    events = controller.state()['frames'][0]['events']
    assert [e['id'] for e in events] == [ids[0], ids[2], ids[3]]


def test_failed_commit_leaves_no_trace(controller, publisher, monkeypatch):
    def failing_commit():
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db.session, 'commit', failing_commit)
    with pytest.raises(TransientIOError):
        controller.start_frame()
    monkeypatch.undo()

    assert publisher.published == []
    state = controller.state()
    assert state['version'] == 0
    assert state['frames'] == []
    assert Frame.query.count() == 0


def test_end_frame_rereads_state_under_the_lock(controller, seeded):
    frame_id = controller.start_frame().id
    stale = db.session.get(Frame, frame_id)
    assert stale.winner_id is None
    # Another writer finalizes the frame behind this session's back
    db.session.execute(
        text('UPDATE frame SET winner_id = :winner WHERE id = :id'),
        {'winner': seeded['player1_id'], 'id': frame_id},
    )
    with pytest.raises(AlreadyFinalizedError):
        controller.end_frame(frame_id, seeded['player2_id'])


def test_removing_event_of_finished_frame_is_a_conflict(controller, seeded):
    p1 = seeded['player1_id']
    frame = controller.start_frame()
    event_id = controller.record_event('faul', p1).id
    controller.end_frame(frame.id, p1)
    with pytest.raises(NoActiveFrameError):
        controller.remove_event(event_id)
    controller.start_frame()
    with pytest.raises(AlreadyFinalizedError):
        controller.remove_event(event_id)
    assert MatchEvent.query.count() == 1


def test_idle_match_locks_are_released(controller):
    controller.start_frame()
    gc.collect()
    assert controller.match_id not in _match_locks
