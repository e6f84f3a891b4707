"""Fixed game tables shared by the room model and the race services."""

# Ten colors x five patterns = fifty visual identity slots
PLAYER_COLORS = [
    '#FF6B6B',  # red
    '#4ECDC4',  # teal
    '#45B7D1',  # blue
    '#96CEB4',  # green
    '#FFEAA7',  # yellow
    '#DDA0DD',  # plum
    '#F4A460',  # sandy
    '#98D8C8',  # mint
    '#FFD93D',  # gold
    '#6C5CE7',  # purple
]

PLAYER_PATTERNS = ['solid', 'striped', 'dotted', 'checker', 'diagonal']

SLOT_COUNT = len(PLAYER_COLORS) * len(PLAYER_PATTERNS)

RACE_LENGTHS = {
    'short': {'meters': 60, 'taps': 180, 'label': '60m Sprint', 'timeout_sec': 2 * 60},
    'medium': {'meters': 100, 'taps': 300, 'label': '100m Classic', 'timeout_sec': 3 * 60},
    'long': {'meters': 200, 'taps': 600, 'label': '200m Endurance', 'timeout_sec': 6 * 60},
}

DEFAULT_RACE_LENGTH = 'medium'
DEFAULT_MEDAL_COUNT = 3
MIN_MEDAL_COUNT = 1
MAX_MEDAL_COUNT = 10

MEDALS = ['\U0001F947', '\U0001F948', '\U0001F949']

ROOM_CODE_LENGTH = 6


def slot_index(color_index, pattern_index):
    return pattern_index * len(PLAYER_COLORS) + color_index


def split_slot(slot):
    """Return (color_index, pattern_index) for a slot number."""
    return slot % len(PLAYER_COLORS), slot // len(PLAYER_COLORS)
