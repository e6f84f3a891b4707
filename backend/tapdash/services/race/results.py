import time
from typing import Optional

from tapdash.constants import MEDALS, RACE_LENGTHS


def ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(n % 10, 'th')
    return f"{n}{suffix}"


def medal_for(index: int, medal_count: int) -> Optional[str]:
    """Medal label for the finisher at zero-based ``index``.

    The first three get pictorial medals; the rest of the medal places get
    a plain ordinal ("4th"); anyone past ``medal_count`` gets nothing.
    """
    if index >= medal_count:
        return None
    if index < len(MEDALS):
        return MEDALS[index]
    return ordinal(index + 1)


def build_results(room, now: Optional[float] = None) -> dict:
    """Summarise the current race of ``room`` for the results screen."""
    finishers = [p for p in room.finish_order if not p.dnf]
    dnf_players = [p for p in room.players.values() if p.dnf]

    if room.race_start_time is None:
        duration_ms = 0
    else:
        end = room.race_end_time
        if end is None:
            end = time.time() if now is None else now
        duration_ms = int((end - room.race_start_time) * 1000)

    finish_order = []
    for player in finishers:
        entry = player.to_dict()
        # Medals follow the rank earned, even if someone ahead has left
        entry['medal'] = medal_for(player.finish_position - 1, room.medal_count)
        finish_order.append(entry)

    dnf = []
    for player in dnf_players:
        entry = player.to_dict()
        entry['finish_time'] = None
        entry['finish_position'] = None
        dnf.append(entry)

    return {
        'finish_order': finish_order,
        'dnf': dnf,
        'race_stats': {
            'duration_ms': duration_ms,
            'total_players': len(room.players),
            'finished_count': len(finishers),
            'dnf_count': len(dnf_players),
            'race_length': RACE_LENGTHS[room.race_length]['label'],
            'taps_required': room.taps_required,
        },
    }
