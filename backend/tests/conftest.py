import os
import sys
import pytest

# Ensure the backend root (containing the `cueboard` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from cueboard import create_app, db, socketio

REFEREE_USERNAME = 'referee'
REFEREE_PASSWORD = 'break-and-run'


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    COMMAND_LOCK_TIMEOUT_SEC = 1
    CORS_ORIGINS = []
    SOCKETIO_MESSAGE_QUEUE = None


class RecordingPublisher:
    """Collects published notifications instead of emitting them."""

    def __init__(self):
        self.published = []

    def publish(self, match_id, notification_type, data=None, version=None, view=None):
        self.published.append({
            'match_id': match_id,
            'type': notification_type,
            'data': data,
            'version': version,
            'view': view,
        })

    def types(self):
        return [item['type'] for item in self.published]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import cueboard.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def seeded(flask_app):
    """A referee account, two players and a best-of-three match."""
    from cueboard.models import Match, Profile, User

    referee = User(username=REFEREE_USERNAME, is_referee=True)
    referee.set_password(REFEREE_PASSWORD)
    viewer = User(username='viewer', is_referee=False)
    viewer.set_password('viewer-pass')
    player1 = Profile(first_name='Anna', last_name='Kovacs')
    player2 = Profile(first_name='Bela', last_name='Nagy')
    db.session.add_all([referee, viewer, player1, player2])
    db.session.flush()
    match = Match(player1_id=player1.id, player2_id=player2.id, frames_to_win=3)
    db.session.add(match)
    db.session.commit()
    return {
        'match_id': match.id,
        'player1_id': player1.id,
        'player2_id': player2.id,
    }


@pytest.fixture()
def publisher():
    return RecordingPublisher()


def login(test_client, username=REFEREE_USERNAME, password=REFEREE_PASSWORD):
    res = test_client.post('/login', json={'username': username, 'password': password})
    assert res.status_code == 200, res.get_json()
    return res


@pytest.fixture()
def referee_client(client, seeded):
    login(client)
    return client


@pytest.fixture()
def referee_sio(flask_app, referee_client):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=referee_client,
        namespace='/referee'
    )
    yield test_client
    if test_client.is_connected('/referee'):
        test_client.disconnect(namespace='/referee')


@pytest.fixture()
def spectator_sio(flask_app, seeded):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/spectator'
    )
    yield test_client
    if test_client.is_connected('/spectator'):
        test_client.disconnect(namespace='/spectator')
