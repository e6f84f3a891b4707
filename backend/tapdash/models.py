import copy
import random
import string
import threading
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional

from tapdash.constants import (
    DEFAULT_MEDAL_COUNT,
    DEFAULT_RACE_LENGTH,
    MAX_MEDAL_COUNT,
    MIN_MEDAL_COUNT,
    PLAYER_COLORS,
    PLAYER_PATTERNS,
    RACE_LENGTHS,
    ROOM_CODE_LENGTH,
    SLOT_COUNT,
    slot_index,
    split_slot,
)
from tapdash.errors import (
    GameInProgress,
    InvalidSettings,
    InvalidTransition,
    RoomFull,
    SlotConflict,
)
from tapdash.services.race.results import build_results
from tapdash.services.race.sessions import DisconnectedPlayers


class RoomState(Enum):
    """
    Lifecycle of a room.

    LOBBY -> COUNTDOWN -> RACING -> FINISH -> PODIUM -> RESULTS
    FINISH / PODIUM / RESULTS -> LOBBY (rematch)
    """
    LOBBY = 'lobby'
    COUNTDOWN = 'countdown'
    RACING = 'racing'
    FINISH = 'finish'
    PODIUM = 'podium'
    RESULTS = 'results'


TRANSITIONS = {
    RoomState.LOBBY: {RoomState.COUNTDOWN},
    RoomState.COUNTDOWN: {RoomState.RACING},
    RoomState.RACING: {RoomState.FINISH},
    RoomState.FINISH: {RoomState.PODIUM, RoomState.LOBBY},
    RoomState.PODIUM: {RoomState.RESULTS, RoomState.LOBBY},
    RoomState.RESULTS: {RoomState.LOBBY},
}

POST_RACE_STATES = (RoomState.FINISH, RoomState.PODIUM, RoomState.RESULTS)


def generate_room_code(exists, length=ROOM_CODE_LENGTH):
    """Generate a short room code for which ``exists(code)`` is False."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not exists(code):
            return code


def normalize_room_code(raw) -> Optional[str]:
    """Canonical upper-case code, or None if ``raw`` cannot be a room code."""
    if not isinstance(raw, str):
        return None
    code = raw.strip().upper()
    if len(code) != ROOM_CODE_LENGTH or not code.isascii() or not code.isalnum():
        return None
    return code


def parse_settings(raw) -> dict:
    """Pick the known settings keys out of a client payload."""
    if not isinstance(raw, dict):
        raise InvalidSettings('Settings must be an object')
    return {key: raw[key] for key in ('race_length', 'medal_count') if key in raw}


class Player:
    def __init__(self, connection_id, session_id, name, number, color_index, pattern_index):
        self.id = connection_id
        self.session_id = session_id
        self.name = name
        self.number = number
        self.color_index = color_index
        self.pattern_index = pattern_index
        self.reset_stats()

    def reset_stats(self):
        self.position = 0
        self.taps = 0
        self.finished = False
        self.dnf = False
        self.finish_time = None
        self.finish_position = None

    @property
    def slot(self):
        return slot_index(self.color_index, self.pattern_index)

    def assign_slot(self, slot):
        self.color_index, self.pattern_index = split_slot(slot)

    def to_dict(self, include_session=False):
        data = {
            'id': self.id,
            'name': self.name,
            'number': self.number,
            'color': PLAYER_COLORS[self.color_index],
            'color_index': self.color_index,
            'pattern': PLAYER_PATTERNS[self.pattern_index],
            'slot': self.slot,
            'position': self.position,
            'taps': self.taps,
            'finished': self.finished,
            'dnf': self.dnf,
            'finish_time': self.finish_time,
            'finish_position': self.finish_position,
        }
        if include_session:
            data['session_id'] = self.session_id
        return data

    def to_position(self):
        return {
            'id': self.id,
            'name': self.name,
            'number': self.number,
            'color': PLAYER_COLORS[self.color_index],
            'pattern': PLAYER_PATTERNS[self.pattern_index],
            'position': self.position,
            'taps': self.taps,
            'finished': self.finished,
        }


class Room:
    """One game instance: its players, settings and race lifecycle.

    Callers hold ``room.lock`` around every read-modify-write so that joins,
    taps and timer callbacks for the same room never interleave.
    """

    def __init__(self, code, host_connection_id, min_players=2, max_players=SLOT_COUNT,
                 name_max_len=24, now=None):
        now = time.time() if now is None else now
        self.code = code
        self.host_connection_id = host_connection_id
        self.state = RoomState.LOBBY
        self.min_players = min_players
        self.max_players = min(max_players, SLOT_COUNT)
        self.name_max_len = name_max_len

        self.players: Dict[str, Player] = {}
        self.disconnected = DisconnectedPlayers()
        self._next_number = 1

        self.race_length = DEFAULT_RACE_LENGTH
        self.medal_count = DEFAULT_MEDAL_COUNT

        self.race_start_time: Optional[float] = None
        self.race_end_time: Optional[float] = None
        self.finish_order: List[Player] = []
        # Ranks handed out this race; departures never free a rank
        self._finish_count = 0

        self.created_at = now
        self.last_activity = now

        self.lock = threading.RLock()
        # Bumped whenever pending timers are invalidated
        self.epoch = 0
        self.timers = {}

    # ---- derived settings ----

    @property
    def taps_required(self) -> int:
        return RACE_LENGTHS[self.race_length]['taps']

    @property
    def race_timeout_sec(self) -> float:
        return RACE_LENGTHS[self.race_length]['timeout_sec']

    @property
    def settings(self) -> dict:
        return {
            'race_length': self.race_length,
            'medal_count': self.medal_count,
            'taps_required': self.taps_required,
        }

    def touch(self, now=None):
        self.last_activity = time.time() if now is None else now

    def is_host(self, connection_id) -> bool:
        return connection_id is not None and connection_id == self.host_connection_id

    # ---- state machine ----

    def _transition(self, target: RoomState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        self.state = target

    def can_start(self) -> bool:
        return self.state is RoomState.LOBBY and len(self.players) >= self.min_players

    def begin_countdown(self, now=None) -> None:
        self._transition(RoomState.COUNTDOWN)
        self._reset_race()
        self.touch(now)

    def start_race(self, now=None) -> None:
        now = time.time() if now is None else now
        self._transition(RoomState.RACING)
        self.race_start_time = now
        self.finish_order = []
        self._finish_count = 0

    def end_race(self, forced=False, now=None) -> bool:
        """Close the race. Returns False if no race was running.

        A forced end (host or timeout) marks every unfinished player DNF.
        """
        if self.state is not RoomState.RACING:
            return False
        now = time.time() if now is None else now
        if forced:
            for player in self.players.values():
                if not player.finished:
                    player.finished = True
                    player.dnf = True
                    player.finish_time = None
        self._transition(RoomState.FINISH)
        self.race_end_time = now
        self.touch(now)
        return True

    def show_podium(self) -> None:
        self._transition(RoomState.PODIUM)

    def show_results(self) -> None:
        self._transition(RoomState.RESULTS)

    def reset_for_rematch(self, now=None) -> bool:
        if self.state not in POST_RACE_STATES:
            return False
        self._transition(RoomState.LOBBY)
        self._reset_race()
        self.touch(now)
        return True

    def _reset_race(self):
        self.race_start_time = None
        self.race_end_time = None
        self.finish_order = []
        self._finish_count = 0
        for player in self.players.values():
            player.reset_stats()
        for player in self.disconnected.snapshots():
            player.reset_stats()

    @property
    def all_finished(self) -> bool:
        return bool(self.players) and all(p.finished for p in self.players.values())

    # ---- players ----

    def taken_slots(self, exclude=None) -> List[int]:
        return sorted(p.slot for p in self.players.values() if p.id != exclude)

    def _assign_slot(self, requested, number, exclude=None) -> int:
        """Pick a free slot, honouring the requested color where possible.

        A taken request moves on to the next pattern of the same color, then
        to the next free slot overall. Default picks walk from the join order.
        """
        taken = set(self.taken_slots(exclude=exclude))
        if requested is not None:
            color, pattern = split_slot(requested)
            for step in range(len(PLAYER_PATTERNS)):
                candidate = slot_index(color, (pattern + step) % len(PLAYER_PATTERNS))
                if candidate not in taken:
                    return candidate
            start = requested
        else:
            start = (number - 1) % SLOT_COUNT
        for step in range(SLOT_COUNT):
            candidate = (start + step) % SLOT_COUNT
            if candidate not in taken:
                return candidate
        raise SlotConflict()

    def _clean_name(self, name, number) -> str:
        if not isinstance(name, str):
            return f"Player {number}"
        name = ' '.join(name.split())[:self.name_max_len]
        return name or f"Player {number}"

    def add_player(self, connection_id, name=None, session_id=None, requested_slot=None, now=None) -> Player:
        existing = self.players.get(connection_id)
        if existing is not None:
            return existing
        if self.state is not RoomState.LOBBY:
            raise GameInProgress()
        if len(self.players) >= self.max_players:
            raise RoomFull()

        try:
            requested = int(requested_slot) if requested_slot is not None else None
        except (TypeError, ValueError):
            requested = None
        if requested is not None and not 0 <= requested < SLOT_COUNT:
            requested = None

        if not isinstance(session_id, str) or not session_id:
            session_id = uuid.uuid4().hex
        # A fresh join replaces any stale grace-window entry for this session
        self.disconnected.discard(session_id)

        number = self._next_number
        slot = self._assign_slot(requested, number)
        self._next_number += 1
        color_index, pattern_index = split_slot(slot)
        player = Player(connection_id, session_id, self._clean_name(name, number), number,
                        color_index, pattern_index)
        self.players[connection_id] = player
        self.touch(now)
        return player

    def remove_player(self, connection_id, temporary=True, now=None) -> Optional[Player]:
        """Drop a player. ``temporary`` keeps a snapshot for reconnection."""
        player = self.players.pop(connection_id, None)
        if player is None:
            return None
        self.finish_order = [p for p in self.finish_order if p is not player]
        if temporary:
            self.disconnected.stash(player, now)
        else:
            self.disconnected.discard(player.session_id)
        self.touch(now)
        return player

    def release_host(self, connection_id) -> bool:
        """Hand the host role on if ``connection_id`` held it.

        The earliest-joined remaining player becomes host; with nobody left
        the room has no host until a sweep collects it.
        """
        if not self.is_host(connection_id):
            return False
        remaining = sorted(self.players.values(), key=lambda p: p.number)
        self.host_connection_id = remaining[0].id if remaining else None
        return True

    def reconnect_player(self, connection_id, session_id, grace_sec, now=None) -> Player:
        if len(self.players) >= self.max_players:
            raise RoomFull()
        snapshot = self.disconnected.claim(session_id, grace_sec, now)
        player = copy.copy(snapshot)
        player.id = connection_id
        if player.slot in self.taken_slots():
            player.assign_slot(self._assign_slot(player.slot, player.number))
        self.players[connection_id] = player

        if self.state in POST_RACE_STATES and not player.finished:
            # Missed the end of the race while away
            player.finished = True
            player.dnf = True
            player.finish_time = None
        if player.finished and not player.dnf and self.state is not RoomState.LOBBY:
            self.finish_order.append(player)
            self.finish_order.sort(key=lambda p: p.finish_position or 0)
        self.touch(now)
        return player

    # ---- race input ----

    def record_tap(self, connection_id, now=None):
        """Count one tap. Returns (player, just_finished)."""
        if self.state is not RoomState.RACING:
            return None, False
        player = self.players.get(connection_id)
        if player is None or player.finished:
            return player, False
        now = time.time() if now is None else now

        player.taps += 1
        player.position = min(player.taps / self.taps_required * 100, 100)
        self.last_activity = now

        if player.position >= 100:
            player.finished = True
            player.finish_time = int((now - self.race_start_time) * 1000)
            self._finish_count += 1
            player.finish_position = self._finish_count
            self.finish_order.append(player)
            return player, True
        return player, False

    def update_settings(self, settings: dict, now=None) -> bool:
        """Apply host settings in the lobby. Unknown values are ignored,
        medal counts are clamped into range."""
        if self.state is not RoomState.LOBBY:
            return False
        race_length = settings.get('race_length')
        if race_length in RACE_LENGTHS:
            self.race_length = race_length
        medal_count = settings.get('medal_count')
        if medal_count is not None and not isinstance(medal_count, bool):
            try:
                medal_count = int(medal_count)
            except (TypeError, ValueError):
                medal_count = None
            if medal_count is not None:
                self.medal_count = max(MIN_MEDAL_COUNT, min(MAX_MEDAL_COUNT, medal_count))
        self.touch(now)
        return True

    # ---- timers ----

    def cancel_timers(self) -> None:
        for handle in self.timers.values():
            handle.cancel()
        self.timers.clear()
        self.epoch += 1

    # ---- views ----

    def get_state(self) -> dict:
        return {
            'room_code': self.code,
            'host_id': self.host_connection_id,
            'state': self.state.value,
            'players': [p.to_dict() for p in self.players.values()],
            'settings': self.settings,
        }

    def get_positions(self) -> List[dict]:
        positions = [p.to_position() for p in self.players.values()]
        positions.sort(key=lambda p: p['position'], reverse=True)
        return positions

    def get_results(self, now=None) -> dict:
        return build_results(self, now)

    def get_info(self) -> dict:
        return {
            'success': True,
            'taken_slots': self.taken_slots(),
            'player_count': len(self.players),
            'state': self.state.value,
        }

    def is_expired(self, empty_retention_sec, inactivity_sec, now=None) -> bool:
        now = time.time() if now is None else now
        if now - self.last_activity > inactivity_sec:
            return True
        return (not self.players and not len(self.disconnected)
                and now - self.created_at > empty_retention_sec)
