from flask import Flask, jsonify
from flask_login import LoginManager
from flask_cors import CORS
from flask_socketio import SocketIO
from config import Config

login_manager = LoginManager()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    login_manager.init_app(flask_app)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # The room registry lives for the lifetime of the process
    from chain_reaction.services.sessions import SessionCoordinator
    flask_app.extensions['sessions'] = SessionCoordinator(
        stale_after=flask_app.config.get('ROOM_STALE_TIMEOUT_SEC', 1800),
        max_rounds=flask_app.config.get('AUTHORITATIVE_MAX_ROUNDS', 1000),
        default_grid_size=flask_app.config.get('DEFAULT_GRID_SIZE', 'MEDIUM'),
    )

    # Import and register blueprints here
    from chain_reaction.main import main
    flask_app.register_blueprint(main)

    from chain_reaction.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    # Register Socket.IO event handlers
    from chain_reaction.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    # Flask-Login user loader: identities are anonymous and carried in the
    # signed session cookie, so any id we issued is valid
    from chain_reaction.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return User(user_id) if user_id else None

    @login_manager.unauthorized_handler
    def unauthorized():
        from chain_reaction.errors import AuthenticationFailed
        return jsonify({'error': 'Sign in first', **AuthenticationFailed('Sign in first').to_dict()}), 401

    return flask_app
