import copy
import os
import sys
import pytest

# Ensure the backend root (containing the `chain_reaction` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from chain_reaction import create_app, socketio
from chain_reaction.services.game.grid import create_grid
from chain_reaction.services.game.shared_store import apply_patch

NAMESPACE = '/ws'


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ORIGINS = ['http://localhost:3000']
    SOCKETIO_NAMESPACE = NAMESPACE
    REQUIRE_LOGIN = True
    ROOM_STALE_TIMEOUT_SEC = 1800
    ROOM_SWEEP_INTERVAL_SEC = 60
    DEFAULT_GRID_SIZE = 'SMALL'
    AUTHORITATIVE_MAX_ROUNDS = 1000


@pytest.fixture()
def flask_app():
    # No app context held open: each request must get a fresh `g`
    return create_app(TestConfig)


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_player(flask_app):
    """Sign a fresh browser in anonymously and open its socket."""
    opened = []

    def _make():
        http = flask_app.test_client()
        res = http.post('/api/session/anonymous')
        assert res.status_code == 201
        sio = socketio.test_client(flask_app, flask_test_client=http, namespace=NAMESPACE)
        assert sio.is_connected(NAMESPACE)
        sio.get_received(NAMESPACE)  # flush 'connected'
        opened.append(sio)
        return sio

    yield _make
    for sio in opened:
        try:
            if sio.is_connected(NAMESPACE):
                sio.disconnect(namespace=NAMESPACE)
        except Exception:
            pass


def events(sio, name=None):
    received = sio.get_received(NAMESPACE)
    if name is None:
        return received
    return [pkt['args'][0] for pkt in received if pkt['name'] == name]


def board(rows, cols, placed=()):
    """Build a grid with (r, c, count, owner) entries pre-loaded."""
    grid = create_grid(rows, cols)
    for r, c, count, owner in placed:
        grid.cells[r][c].count = count
        grid.cells[r][c].owner = owner
    return grid


class InMemorySharedStore:
    """Synchronous stand-in for ``RedisSharedStore``: listeners fire on every write."""

    def __init__(self, clock=lambda: 1000.0):
        self.clock = clock
        self.rooms = {}
        self.listeners = {}

    def now(self):
        return self.clock()

    def get(self, code):
        return copy.deepcopy(self.rooms.get(code))

    def set(self, code, data):
        if data is None:
            self.rooms.pop(code, None)
        else:
            self.rooms[code] = copy.deepcopy(data)
        self._notify(code)

    def update(self, code, patch):
        apply_patch(self.rooms.setdefault(code, {}), patch)
        self._notify(code)

    def delete(self, code):
        self.set(code, None)

    def waiting_rooms(self, limit=10):
        found = [(code, copy.deepcopy(data)) for code, data in self.rooms.items()
                 if data.get('status') == 'waiting']
        return found[:limit]

    def subscribe(self, code, listener):
        self.listeners.setdefault(code, []).append(listener)
        listener(self.get(code))

        def unsubscribe():
            if listener in self.listeners.get(code, []):
                self.listeners[code].remove(listener)
        return unsubscribe

    def _notify(self, code):
        for listener in list(self.listeners.get(code, [])):
            listener(self.get(code))


def codes(*values):
    """Room code factory handing out ``values`` in order."""
    it = iter(values)

    def factory(exists=None):
        return next(it)
    return factory
