import threading

from tapdash.models import RoomState


class TimerHandle:
    """A pending timed callback for one room.

    The handle remembers the room epoch it was scheduled under; a callback
    from an older epoch is dropped instead of touching the new race.
    """

    def __init__(self, name, room_code, epoch, delay, callback, args=()):
        self.name = name
        self.room_code = room_code
        self.epoch = epoch
        self.delay = delay
        self.callback = callback
        self.args = args
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def __repr__(self):
        return f"<TimerHandle {self.name} room={self.room_code} epoch={self.epoch}>"


class RaceController:
    """Drives the time-based part of a race.

    - Countdown: COUNTDOWN_FROM .. 0 on a COUNTDOWN_TICK_SEC cadence, then RACING
    - Position broadcast every POSITION_UPDATE_INTERVAL_SEC while RACING
    - Race timeout from the room's race length at the moment racing starts
    - FINISH -> PODIUM -> RESULTS after fixed delays

    Public methods expect the caller to hold ``room.lock``; timer callbacks
    take it themselves.
    """

    def __init__(self, app=None, socketio=None, registry=None):
        self.app = None
        self.socketio = None
        self.registry = None
        self.namespace = '/'
        if app is not None:
            self.init_app(app, socketio, registry)

    def init_app(self, app, socketio, registry):
        self.app = app
        self.socketio = socketio
        self.registry = registry
        self.namespace = app.config.get('SOCKETIO_NAMESPACE', '/')
        app.extensions['tapdash.race'] = self

    def _emit(self, event, data, to):
        self.socketio.emit(event, data, to=to, namespace=self.namespace)

    # ---- timers ----

    def _schedule(self, room, name, delay, callback, *args) -> TimerHandle:
        previous = room.timers.pop(name, None)
        if previous is not None:
            previous.cancel()
        handle = TimerHandle(name, room.code, room.epoch, delay, callback, args)
        room.timers[name] = handle
        if name != 'positions':
            self.app.logger.info(
                f"[timer-set] room={room.code} timer={name} delay={delay}s epoch={room.epoch}"
            )
        if self.app.config.get('RACE_TIMERS_ENABLED', True):
            self.socketio.start_background_task(self._worker, handle)
        return handle

    def _worker(self, handle):
        self.socketio.sleep(handle.delay)
        self.fire(handle)

    def fire(self, handle) -> bool:
        """Run a timer callback if its room and epoch are still current."""
        room = self.registry.lookup(handle.room_code)
        if room is None or handle.cancelled:
            self.app.logger.debug(f"[timer-abort] {handle!r} cancelled or room gone")
            return False
        with room.lock:
            if handle.cancelled or room.epoch != handle.epoch:
                self.app.logger.debug(f"[timer-abort] {handle!r} stale, room epoch={room.epoch}")
                return False
            if room.timers.get(handle.name) is handle:
                del room.timers[handle.name]
            handle.callback(room, *handle.args)
        return True

    # ---- race lifecycle ----

    def start(self, room) -> bool:
        if not room.can_start():
            return False
        room.cancel_timers()
        room.begin_countdown()
        self.app.logger.info(f"[race-countdown] room={room.code} players={len(room.players)}")
        self._emit('countdown_started', {}, room.code)
        self._schedule(room, 'countdown', self.app.config['COUNTDOWN_TICK_SEC'],
                       self._countdown_tick, self.app.config['COUNTDOWN_FROM'])
        return True

    def _countdown_tick(self, room, count):
        if room.state is not RoomState.COUNTDOWN:
            return
        self._emit('countdown', {'count': count}, room.code)
        if count > 0:
            self._schedule(room, 'countdown', self.app.config['COUNTDOWN_TICK_SEC'],
                           self._countdown_tick, count - 1)
            return

        room.start_race()
        timeout = room.race_timeout_sec
        self.app.logger.info(
            f"[race-start] room={room.code} length={room.race_length} timeout={timeout}s"
        )
        self._emit('race_started', {
            'race_start_time': room.race_start_time,
            'taps_required': room.taps_required,
            'timeout_sec': timeout,
        }, room.code)
        self._schedule(room, 'positions', self.app.config['POSITION_UPDATE_INTERVAL_SEC'],
                       self._broadcast_positions)
        self._schedule(room, 'race_timeout', timeout, self._race_timeout)

    def _broadcast_positions(self, room):
        if room.state is not RoomState.RACING:
            return
        self._emit('position_update', {'positions': room.get_positions()}, room.code)
        self._schedule(room, 'positions', self.app.config['POSITION_UPDATE_INTERVAL_SEC'],
                       self._broadcast_positions)

    def _race_timeout(self, room):
        if room.state is not RoomState.RACING:
            return
        self.app.logger.info(f"[race-timeout] room={room.code}")
        self.finish(room, forced=True)

    def tap(self, room, connection_id):
        player, just_finished = room.record_tap(connection_id)
        if not just_finished:
            return player
        self._emit('player_finished', {
            'position': player.finish_position,
            'finish_time': player.finish_time,
            'taps': player.taps,
            'total_players': len(room.players),
        }, connection_id)
        self._emit('someone_finished', {
            'player_id': player.id,
            'name': player.name,
            'rank': player.finish_position,
        }, room.code)
        self.check_natural_finish(room)
        return player

    def check_natural_finish(self, room) -> bool:
        if room.state is RoomState.RACING and room.all_finished:
            return self.finish(room, forced=False)
        return False

    def finish(self, room, forced=False) -> bool:
        """End the running race once; later calls are no-ops."""
        if not room.end_race(forced=forced):
            return False
        # Drops the position loop and the pending timeout
        room.cancel_timers()
        results = room.get_results()
        stats = results['race_stats']
        self.app.logger.info(
            f"[race-end] room={room.code} forced={forced} "
            f"finished={stats['finished_count']} dnf={stats['dnf_count']}"
        )
        self._emit('position_update', {'positions': room.get_positions()}, room.code)
        self._emit('race_ended', results, room.code)
        self._schedule(room, 'podium', self.app.config['FINISH_DELAY_SEC'], self._show_podium)
        return True

    def _show_podium(self, room):
        if room.state is not RoomState.FINISH:
            return
        room.show_podium()
        self._emit('state_changed', {'state': room.state.value}, room.code)
        self._schedule(room, 'results', self.app.config['PODIUM_DURATION_SEC'], self._show_results)

    def _show_results(self, room):
        if room.state is not RoomState.PODIUM:
            return
        room.show_results()
        self._emit('state_changed', {'state': room.state.value}, room.code)

    def rematch(self, room) -> bool:
        if not room.reset_for_rematch():
            return False
        room.cancel_timers()
        self.app.logger.info(f"[rematch] room={room.code}")
        self._emit('rematch_started', {'room_state': room.get_state()}, room.code)
        return True


race_controller = RaceController()
