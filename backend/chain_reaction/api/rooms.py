from flask import Blueprint, current_app, jsonify

from chain_reaction.errors import RoomNotFound
from chain_reaction.services.game.grid import DEFAULT_GRID_SIZE, GRID_SIZES

rooms = Blueprint('rooms', __name__)


def _coordinator():
    return current_app.extensions['sessions']


@rooms.route('', methods=['GET'])
def list_rooms():
    """
    Returns room counts by status and the auto-match queue length.
    """
    return jsonify(_coordinator().stats())


@rooms.route('/sizes', methods=['GET'])
def grid_sizes():
    return jsonify({
        'default': current_app.config.get('DEFAULT_GRID_SIZE', DEFAULT_GRID_SIZE),
        'sizes': [{'name': name, 'rows': rows, 'cols': cols} for name, (rows, cols) in GRID_SIZES.items()],
    })


@rooms.route('/<string:room_code>', methods=['GET'])
def get_room(room_code):
    """
    Returns a read-only snapshot of a room.
    """
    try:
        state = _coordinator().room_state(room_code)
    except RoomNotFound as exc:
        return jsonify({'error': exc.message, **exc.to_dict()}), 404
    return jsonify(state)
