import copy
import time
from typing import Dict, Optional, Tuple

from tapdash.errors import ReconnectFailed


class DisconnectedPlayers:
    """Grace-window store for players who lost their connection.

    Keyed by the client's persistent session id, never by connection id:
    the connection id is dead once the transport drops.
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[object, float]] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, session_id):
        return session_id in self._entries

    def snapshots(self):
        return [player for player, _ in self._entries.values()]

    def stash(self, player, now: Optional[float] = None) -> None:
        if not player.session_id:
            return
        disconnected_at = time.time() if now is None else now
        self._entries[player.session_id] = (copy.copy(player), disconnected_at)

    def discard(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def claim(self, session_id: str, grace_sec: float, now: Optional[float] = None):
        """Remove and return the snapshot for ``session_id``.

        Raises ReconnectFailed when there is no entry or its window has passed.
        """
        now = time.time() if now is None else now
        if not isinstance(session_id, str):
            raise ReconnectFailed()
        entry = self._entries.get(session_id)
        if entry is None:
            raise ReconnectFailed()
        player, disconnected_at = entry
        if now - disconnected_at >= grace_sec:
            self._entries.pop(session_id, None)
            raise ReconnectFailed('Reconnection window has expired')
        self._entries.pop(session_id, None)
        return player

    def purge(self, grace_sec: float, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        expired = [sid for sid, (_, at) in self._entries.items() if now - at >= grace_sec]
        for sid in expired:
            del self._entries[sid]
        return len(expired)
