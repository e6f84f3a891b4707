from flask import Blueprint, jsonify

from tapdash import registry
from tapdash.errors import RoomNotFound
from tapdash.models import POST_RACE_STATES

rooms = Blueprint('rooms', __name__)

@rooms.route('/<string:room_code>', methods=['GET'])
def get_room_info(room_code):
    """
    Returns the taken color slots and player count, for the join screen.
    """
    try:
        room = registry.get(room_code)
    except RoomNotFound as exc:
        return jsonify({'error': exc.message}), 404
    with room.lock:
        return jsonify(room.get_info()), 200

@rooms.route('/<string:room_code>/results', methods=['GET'])
def get_results(room_code):
    """
    Returns the standings of the last race once it has ended.
    """
    try:
        room = registry.get(room_code)
    except RoomNotFound as exc:
        return jsonify({'error': exc.message}), 404
    with room.lock:
        if room.state not in POST_RACE_STATES:
            return jsonify({'error': 'The race has not finished yet', 'state': room.state.value}), 409
        return jsonify(room.get_results()), 200
