import os


def _split(value):
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///cueboard.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Upper bound for a single persistence call (driver connect / busy timeout)
    PERSIST_TIMEOUT_SEC = float(os.environ.get('PERSIST_TIMEOUT_SEC', '5'))
    # Upper bound for waiting on another command for the same match
    COMMAND_LOCK_TIMEOUT_SEC = float(os.environ.get('COMMAND_LOCK_TIMEOUT_SEC', '5'))
    # Subscriber reconnect delay after a non-normal closure
    RECONNECT_BACKOFF_SEC = float(os.environ.get('RECONNECT_BACKOFF_SEC', '3'))
    CORS_ORIGINS = _split(os.environ.get(
        'CORS_ORIGINS',
        'http://localhost:3000,http://127.0.0.1:3000',
    ))
    # Optional: redis://... to fan out across several server processes
    SOCKETIO_MESSAGE_QUEUE = os.environ.get('SOCKETIO_MESSAGE_QUEUE')
    # Seed credentials used by `flask db-reset`
    SEED_REFEREE_USERNAME = os.environ.get('SEED_REFEREE_USERNAME', 'referee')
    SEED_REFEREE_PASSWORD = os.environ.get('SEED_REFEREE_PASSWORD', 'password')
