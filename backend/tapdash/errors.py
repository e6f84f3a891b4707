"""Exception hierarchy for room and race operations.

Each error carries a stable ``code`` for clients and a readable message.
The Socket.IO layer turns them into ``{"success": False, ...}`` acks.
"""


class TapDashError(Exception):
    """Base exception for all room/race errors."""

    code = 'error'
    message = 'Something went wrong'

    def __init__(self, message=None):
        self.message = message or self.message
        super().__init__(self.message)

    def to_dict(self):
        return {'success': False, 'error': self.message, 'code': self.code}


class RoomNotFound(TapDashError):
    code = 'room_not_found'
    message = 'Room not found'


class RoomFull(TapDashError):
    code = 'room_full'
    message = 'Room is full'


class GameInProgress(TapDashError):
    code = 'game_in_progress'
    message = 'Game already in progress'


class InvalidSettings(TapDashError):
    code = 'invalid_settings'
    message = 'Invalid settings'


class Unauthorized(TapDashError):
    code = 'unauthorized'
    message = 'Only the host can do that'


class SlotConflict(TapDashError):
    code = 'slot_conflict'
    message = 'No color and pattern combination is available'


class ReconnectFailed(TapDashError):
    code = 'reconnect_failed'
    message = 'No session to restore'


class InvalidTransition(TapDashError):
    """Raised when a room is asked to make a state change it does not allow."""

    code = 'invalid_transition'

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move from {current.value} to {target.value}")
