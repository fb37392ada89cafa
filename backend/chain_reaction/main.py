import uuid
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from .models import User

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Chain Reaction server. Online play uses Socket.IO.'})

@main.route('/health')
def health():
    return jsonify({
        'status': 'ok',
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }), 200

@main.route('/api/session/anonymous', methods=['POST', 'OPTIONS'])
def sign_in_anonymously():
    """
    Issues an anonymous identity stored in the session cookie. Signing in
    again while already signed in keeps the existing identity.
    """
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    if current_user.is_authenticated:
        return jsonify({'success': True, 'user': current_user.to_dict()}), 200
    user = User(uuid.uuid4().hex)
    login_user(user, remember=True)
    return jsonify({'success': True, 'user': user.to_dict()}), 201

@main.route('/api/session', methods=['GET'])
@login_required
def current_session():
    return jsonify({'success': True, 'user': current_user.to_dict()})

@main.route('/api/session/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})
