from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from tapdash import race_controller, registry, socketio
from tapdash.errors import ReconnectFailed, TapDashError, Unauthorized
from tapdash.models import parse_settings


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _payload(data) -> dict:
    return data if isinstance(data, dict) else {}


def _broadcast(event, data, room) -> None:
    socketio.emit(event, data, to=room.code, namespace=race_controller.namespace)


def _join_url(code) -> str:
    base = current_app.config.get('BASE_URL') or request.host_url
    return f"{base.rstrip('/')}/play/{code}"


def _require_host(room) -> None:
    if not room.is_host(_get_sid()):
        raise Unauthorized()


def _ignored(event, exc) -> None:
    # Host-only commands fail silently so stale host screens don't leak errors
    current_app.logger.debug(f"[ignored] event={event} sid={_get_sid()} reason={exc.code}")


def _depart(room, sid, temporary) -> None:
    """Remove ``sid`` from ``room`` as a player and/or host. Caller holds room.lock."""
    player = room.remove_player(sid, temporary=temporary)
    host_moved = room.release_host(sid)
    registry.unbind(sid)
    if player is not None:
        current_app.logger.info(
            f"[player-left] room={room.code} player={player.name} temporary={temporary}"
        )
        _broadcast('player_left', {'player_id': sid, 'total_players': len(room.players)}, room)
    if host_moved:
        current_app.logger.info(f"[host-changed] room={room.code} host={room.host_connection_id}")
        _broadcast('host_changed', {'new_host_id': room.host_connection_id}, room)
    if player is not None:
        race_controller.check_natural_finish(room)


# ---- connection lifecycle ----

def handle_connect(auth=None):
    emit('connected', {'sid': _get_sid()})


def handle_disconnect(reason=None):
    sid = _get_sid()
    room = registry.room_for_connection(sid)
    if room is None:
        return
    with room.lock:
        _depart(room, sid, temporary=True)


# ---- host requests ----

def handle_create_room(data=None):
    sid = _get_sid()
    room = registry.create_room(sid)
    join_room(room.code)
    return {
        'success': True,
        'room_code': room.code,
        'join_url': _join_url(room.code),
        'settings': room.settings,
    }


def handle_update_settings(data):
    payload = _payload(data)
    try:
        room = registry.get(payload.get('room_code'))
        with room.lock:
            _require_host(room)
            settings = parse_settings(payload.get('settings'))
            if not room.update_settings(settings):
                current_app.logger.debug(f"[ignored] event=update_settings room={room.code} state={room.state.value}")
                return
            _broadcast('settings_updated', {'settings': room.settings}, room)
    except TapDashError as exc:
        _ignored('update_settings', exc)


def handle_start_race(data):
    try:
        room = registry.get(_payload(data).get('room_code'))
        with room.lock:
            _require_host(room)
            race_controller.start(room)
    except TapDashError as exc:
        _ignored('start_race', exc)


def handle_force_finish(data):
    try:
        room = registry.get(_payload(data).get('room_code'))
        with room.lock:
            _require_host(room)
            race_controller.finish(room, forced=True)
    except TapDashError as exc:
        _ignored('force_finish', exc)


def handle_request_rematch(data):
    try:
        room = registry.get(_payload(data).get('room_code'))
        with room.lock:
            _require_host(room)
            race_controller.rematch(room)
    except TapDashError as exc:
        _ignored('request_rematch', exc)


# ---- controller requests ----

def handle_get_room_info(data):
    try:
        room = registry.get(_payload(data).get('room_code'))
    except TapDashError as exc:
        return exc.to_dict()
    with room.lock:
        return room.get_info()


def handle_join_room(data):
    payload = _payload(data)
    sid = _get_sid()
    try:
        room = registry.get(payload.get('room_code'))
        with room.lock:
            player = room.add_player(
                sid,
                name=payload.get('display_name'),
                session_id=payload.get('session_id'),
                requested_slot=payload.get('requested_slot'),
            )
            registry.bind(sid, room.code)
            join_room(room.code)
            _broadcast('player_joined', {'player': player.to_dict(), 'total_players': len(room.players)}, room)
            room_state = room.get_state()
    except TapDashError as exc:
        current_app.logger.info(f"[join-reject] room={payload.get('room_code')} reason={exc.code}")
        return exc.to_dict()
    current_app.logger.info(
        f"[player-join] room={room.code} player={player.name} number={player.number} slot={player.slot}"
    )
    return {'success': True, 'player': player.to_dict(include_session=True), 'room_state': room_state}


def handle_reconnect_player(data):
    payload = _payload(data)
    sid = _get_sid()
    try:
        room = registry.get(payload.get('room_code'))
        with room.lock:
            player = room.reconnect_player(
                sid, payload.get('session_id'), current_app.config['RECONNECT_GRACE_SEC']
            )
            registry.bind(sid, room.code)
            join_room(room.code)
            _broadcast('player_reconnected', {'player': player.to_dict(), 'total_players': len(room.players)}, room)
            if room.host_connection_id is None:
                room.host_connection_id = sid
                _broadcast('host_changed', {'new_host_id': sid}, room)
            state = room.state.value
            room_state = room.get_state()
    except ReconnectFailed as exc:
        current_app.logger.info(f"[reconnect-reject] room={room.code} reason={exc.code}")
        # Hand back what the join screen needs to start over
        with room.lock:
            info = room.get_info()
        return {**exc.to_dict(), 'taken_slots': info['taken_slots'], 'player_count': info['player_count']}
    except TapDashError as exc:
        current_app.logger.info(f"[reconnect-reject] room={payload.get('room_code')} reason={exc.code}")
        return exc.to_dict()
    current_app.logger.info(f"[player-reconnect] room={room.code} player={player.name}")
    return {
        'success': True,
        'player': player.to_dict(include_session=True),
        'state': state,
        'room_state': room_state,
    }


def handle_tap(data):
    room = registry.lookup(_payload(data).get('room_code'))
    if room is None:
        return
    with room.lock:
        race_controller.tap(room, _get_sid())


def handle_leave_room(data):
    sid = _get_sid()
    room = registry.lookup(_payload(data).get('room_code'))
    if room is not None:
        with room.lock:
            _depart(room, sid, temporary=False)
        leave_room(room.code)
    return {'success': True}


def register_socketio_handlers(namespace='/') -> None:
    """Register Socket.IO event handlers on the game namespace."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('create_room', handle_create_room, namespace=namespace)
    socketio.on_event('update_settings', handle_update_settings, namespace=namespace)
    socketio.on_event('start_race', handle_start_race, namespace=namespace)
    socketio.on_event('force_finish', handle_force_finish, namespace=namespace)
    socketio.on_event('request_rematch', handle_request_rematch, namespace=namespace)
    socketio.on_event('get_room_info', handle_get_room_info, namespace=namespace)
    socketio.on_event('join_room', handle_join_room, namespace=namespace)
    socketio.on_event('reconnect_player', handle_reconnect_player, namespace=namespace)
    socketio.on_event('tap', handle_tap, namespace=namespace)
    socketio.on_event('leave_room', handle_leave_room, namespace=namespace)
