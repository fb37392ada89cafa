import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Comma separated list of allowed browser origins
    CORS_ORIGINS = [o.strip() for o in os.environ.get(
        'CORS_ORIGINS',
        'http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173',
    ).split(',') if o.strip()]
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/ws')
    # Refuse socket connections without an anonymous sign-in first
    REQUIRE_LOGIN = os.environ.get('REQUIRE_LOGIN', '1') not in ('0', 'false', 'False')
    # Rooms idle for longer than this are purged by the sweeper (seconds)
    ROOM_STALE_TIMEOUT_SEC = int(os.environ.get('ROOM_STALE_TIMEOUT_SEC', '1800'))
    ROOM_SWEEP_INTERVAL_SEC = int(os.environ.get('ROOM_SWEEP_INTERVAL_SEC', '60'))
    DEFAULT_GRID_SIZE = os.environ.get('DEFAULT_GRID_SIZE', 'MEDIUM')
    # Upper bound on explosion rounds when the server resolves a move
    AUTHORITATIVE_MAX_ROUNDS = int(os.environ.get('AUTHORITATIVE_MAX_ROUNDS', '1000'))
