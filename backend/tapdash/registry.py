"""Process-wide room registry.

Follows the Flask extension pattern: a module-level ``registry`` object
bound to the app with ``init_app``. Every lookup of a room by code or by
connection id goes through it.
"""

import threading
import time
from typing import Dict, List, Optional

from tapdash.errors import RoomNotFound
from tapdash.models import Room, generate_room_code, normalize_room_code


class RoomRegistry:
    def __init__(self, app=None):
        self.app = None
        self._rooms: Dict[str, Room] = {}
        # connection id -> room code, for hosts and players alike
        self._connections: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._sweeper_started = False
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        with self._lock:
            self._rooms.clear()
            self._connections.clear()
        app.extensions['tapdash.registry'] = self

    def __len__(self):
        return len(self._rooms)

    def codes(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    # ---- rooms ----

    def create_room(self, host_connection_id, now=None) -> Room:
        config = self.app.config
        with self._lock:
            code = generate_room_code(lambda c: c in self._rooms)
            room = Room(
                code,
                host_connection_id,
                min_players=config['MIN_PLAYERS'],
                max_players=config['MAX_PLAYERS'],
                name_max_len=config['PLAYER_NAME_MAX_LEN'],
                now=now,
            )
            self._rooms[code] = room
            self._connections[host_connection_id] = code
        self.app.logger.info(f"[room-create] room={code} host={host_connection_id}")
        return room

    def lookup(self, code) -> Optional[Room]:
        code = normalize_room_code(code)
        if code is None:
            return None
        return self._rooms.get(code)

    def get(self, code) -> Room:
        room = self.lookup(code)
        if room is None:
            raise RoomNotFound()
        return room

    def delete_room(self, code) -> Optional[Room]:
        with self._lock:
            room = self._rooms.pop(code, None)
            if room is None:
                return None
            for sid in [s for s, c in self._connections.items() if c == code]:
                del self._connections[sid]
        with room.lock:
            room.cancel_timers()
        self.app.logger.info(f"[room-delete] room={code}")
        return room

    # ---- connections ----

    def bind(self, connection_id, code) -> None:
        with self._lock:
            self._connections[connection_id] = code

    def unbind(self, connection_id) -> Optional[str]:
        with self._lock:
            return self._connections.pop(connection_id, None)

    def room_for_connection(self, connection_id) -> Optional[Room]:
        code = self._connections.get(connection_id)
        return self._rooms.get(code) if code else None

    # ---- cleanup ----

    def sweep(self, now=None) -> List[str]:
        """Delete expired rooms and stale reconnection entries.

        Returns the codes of the deleted rooms.
        """
        now = time.time() if now is None else now
        config = self.app.config
        with self._lock:
            rooms = list(self._rooms.values())

        expired = []
        purged = 0
        for room in rooms:
            with room.lock:
                purged += room.disconnected.purge(config['RECONNECT_GRACE_SEC'], now)
                if room.is_expired(config['EMPTY_ROOM_RETENTION_SEC'], config['ROOM_INACTIVITY_SEC'], now):
                    expired.append(room.code)

        for code in expired:
            self.delete_room(code)
        self.app.logger.info(
            f"[sweep] rooms={len(rooms)} deleted={len(expired)} purged_sessions={purged}"
        )
        return expired

    def start_sweeper(self, socketio, namespace='/') -> None:
        if self._sweeper_started:
            return
        self._sweeper_started = True
        socketio.start_background_task(self._sweeper, socketio, namespace)

    def _sweeper(self, socketio, namespace):
        interval = self.app.config['ROOM_SWEEP_INTERVAL_SEC']
        while True:
            socketio.sleep(interval)
            try:
                closed = self.sweep()
            except Exception:
                self.app.logger.exception("[sweep-error]")
                continue
            for code in closed:
                socketio.emit('room_closed', {'room_code': code}, to=code, namespace=namespace)
                socketio.close_room(code, namespace=namespace)


registry = RoomRegistry()
