from functools import wraps

from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user

from cueboard.models import User

main = Blueprint('main', __name__)


def referee_required(view):
    """login_required plus the referee flag."""
    @login_required
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_referee:
            return jsonify({'error': 'Only referees may change match state'}), 403
        return view(*args, **kwargs)
    return wrapper


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the cueboard scoring server!'})


@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(username=data.get('username')).first()
    if user and user.check_password(data.get('password') or ''):
        login_user(user, remember=True)
        return jsonify({'success': True, 'user': user.to_dict()})
    return jsonify({'success': False, 'error': 'Invalid username or password'}), 401


@main.route('/check_login', methods=['GET'])
@login_required
def check_login():
    return jsonify({'success': True, 'user': current_user.to_dict()})


@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})
