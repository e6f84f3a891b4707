import os


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Comma-separated; '*' lets phones on tunnels and LAN addresses connect
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
    # Public base for join links, e.g. an ngrok URL. Falls back to the request host.
    BASE_URL = os.environ.get('BASE_URL')
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/')
    # Room capacity
    MIN_PLAYERS = int(os.environ.get('MIN_PLAYERS', '2'))
    MAX_PLAYERS = int(os.environ.get('MAX_PLAYERS', '50'))
    PLAYER_NAME_MAX_LEN = int(os.environ.get('PLAYER_NAME_MAX_LEN', '24'))
    # Race timers (seconds)
    COUNTDOWN_FROM = int(os.environ.get('COUNTDOWN_FROM', '3'))
    COUNTDOWN_TICK_SEC = float(os.environ.get('COUNTDOWN_TICK_SEC', '1'))
    POSITION_UPDATE_INTERVAL_SEC = float(os.environ.get('POSITION_UPDATE_INTERVAL_SEC', '0.05'))
    FINISH_DELAY_SEC = float(os.environ.get('FINISH_DELAY_SEC', '1'))
    PODIUM_DURATION_SEC = float(os.environ.get('PODIUM_DURATION_SEC', '5'))
    # Reconnection and room cleanup (seconds)
    RECONNECT_GRACE_SEC = int(os.environ.get('RECONNECT_GRACE_SEC', '300'))
    EMPTY_ROOM_RETENTION_SEC = int(os.environ.get('EMPTY_ROOM_RETENTION_SEC', '3600'))
    ROOM_INACTIVITY_SEC = int(os.environ.get('ROOM_INACTIVITY_SEC', '7200'))
    ROOM_SWEEP_INTERVAL_SEC = int(os.environ.get('ROOM_SWEEP_INTERVAL_SEC', '600'))
    # Set to false to queue race timers without spawning workers
    RACE_TIMERS_ENABLED = _env_flag('RACE_TIMERS_ENABLED', True)
    ROOM_SWEEPER_ENABLED = _env_flag('ROOM_SWEEPER_ENABLED', True)
