from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

from cueboard.services.broadcast import Broadcaster  # noqa: E402

broadcaster = Broadcaster(socketio)


def _engine_options(config):
    """Bound every persistence call by PERSIST_TIMEOUT_SEC."""
    uri = config.get('SQLALCHEMY_DATABASE_URI') or ''
    timeout = float(config.get('PERSIST_TIMEOUT_SEC', 5))
    if uri.startswith('sqlite'):
        return {'connect_args': {'timeout': timeout}}
    return {
        'pool_pre_ping': True,
        'pool_timeout': timeout,
        'connect_args': {'connect_timeout': max(1, int(timeout))},
    }


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', _engine_options(flask_app.config))
    origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(
        flask_app,
        cors_allowed_origins=origins,
        message_queue=flask_app.config.get('SOCKETIO_MESSAGE_QUEUE'),
    )

    from cueboard.main import main
    flask_app.register_blueprint(main)

    from cueboard.api.matches import api
    flask_app.register_blueprint(api, url_prefix='/api')

    from cueboard.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from cueboard.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Referee login required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from cueboard.models import Match, Profile
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            referee = User(username=flask_app.config['SEED_REFEREE_USERNAME'], is_referee=True)
            referee.set_password(flask_app.config['SEED_REFEREE_PASSWORD'])
            db.session.add(referee)

            # Seed a demo match between two players
            player1 = Profile(first_name='Anna', last_name='Kovacs')
            player2 = Profile(first_name='Bela', last_name='Nagy')
            db.session.add_all([player1, player2])
            db.session.flush()
            db.session.add(Match(player1_id=player1.id, player2_id=player2.id, frames_to_win=3))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
