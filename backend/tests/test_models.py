import string

import pytest

from tapdash.constants import PLAYER_PATTERNS, RACE_LENGTHS
from tapdash.errors import (
    GameInProgress,
    InvalidSettings,
    InvalidTransition,
    ReconnectFailed,
    RoomFull,
)
from tapdash.models import Room, RoomState, generate_room_code, normalize_room_code, parse_settings

T0 = 1_000_000.0


def make_room(players=0, **kwargs):
    room = Room('ABC123', 'host-sid', now=T0, **kwargs)
    for i in range(players):
        room.add_player(f"sid-{i + 1}", name=f"P{i + 1}", session_id=f"sess-{i + 1}", now=T0)
    return room


def start_racing(room, now=T0):
    room.begin_countdown(now=now)
    room.start_race(now=now)


def tap_times(room, sid, n, now=T0 + 10):
    result = (None, False)
    for _ in range(n):
        result = room.record_tap(sid, now=now)
    return result


def test_join_numbers_are_sequential():
    room = make_room(players=12)
    assert [p.number for p in room.players.values()] == list(range(1, 13))


def test_join_numbers_not_reused_after_leave():
    room = make_room(players=3)
    room.remove_player('sid-2', temporary=False)
    player = room.add_player('sid-4', name='Dee')
    assert player.number == 4


def test_default_slots_round_robin_colors_then_patterns():
    room = make_room(players=12)
    players = list(room.players.values())
    assert [p.color_index for p in players[:10]] == list(range(10))
    assert all(p.pattern_index == 0 for p in players[:10])
    assert (players[10].color_index, players[10].pattern_index) == (0, 1)
    assert (players[11].color_index, players[11].pattern_index) == (1, 1)


def test_fifty_players_get_fifty_distinct_slots():
    room = make_room(players=50)
    assert len(set(room.taken_slots())) == 50


def test_requested_slot_is_honoured():
    room = make_room()
    player = room.add_player('sid-a', requested_slot=27)
    assert (player.color_index, player.pattern_index) == (7, 2)
    assert player.to_dict()['pattern'] == PLAYER_PATTERNS[2]


def test_requested_slot_conflict_moves_to_next_pattern_of_same_color():
    room = make_room()
    room.add_player('sid-a', requested_slot=3)
    second = room.add_player('sid-b', requested_slot=3)
    assert second.color_index == 3
    assert second.pattern_index == 1


def test_requested_slot_conflict_wraps_patterns():
    room = make_room()
    room.add_player('sid-a', requested_slot=43)
    second = room.add_player('sid-b', requested_slot=43)
    assert (second.color_index, second.pattern_index) == (3, 0)


def test_requested_color_exhausted_falls_back_to_free_slot():
    room = make_room()
    for i in range(5):
        room.add_player(f"sid-{i}", requested_slot=i * 10 + 4)
    extra = room.add_player('sid-x', requested_slot=4)
    assert extra.slot not in {4, 14, 24, 34, 44}
    assert len(set(room.taken_slots())) == 6


def test_invalid_requested_slot_uses_default():
    room = make_room()
    player = room.add_player('sid-a', requested_slot='not-a-slot')
    assert player.slot == 0
    player = room.add_player('sid-b', requested_slot=99)
    assert player.slot == 1


def test_default_assignment_skips_taken_slots():
    room = make_room()
    room.add_player('sid-a', requested_slot=1)
    second = room.add_player('sid-b')
    assert second.slot == 2


def test_display_names_are_cleaned():
    room = make_room(name_max_len=8)
    assert room.add_player('sid-a', name='  Very   long name here ').name == 'Very lon'
    assert room.add_player('sid-b', name='   ').name == 'Player 2'
    assert room.add_player('sid-c').name == 'Player 3'


def test_join_mints_session_id_when_missing():
    room = make_room()
    player = room.add_player('sid-a')
    assert player.session_id
    assert 'session_id' not in player.to_dict()
    assert player.to_dict(include_session=True)['session_id'] == player.session_id


def test_join_twice_from_same_connection_is_idempotent():
    room = make_room(players=1)
    again = room.add_player('sid-1', name='Other')
    assert again.name == 'P1'
    assert len(room.players) == 1


def test_room_full():
    room = make_room(players=3, max_players=3)
    with pytest.raises(RoomFull):
        room.add_player('sid-x')


def test_join_outside_lobby_rejected():
    room = make_room(players=2)
    room.begin_countdown()
    with pytest.raises(GameInProgress):
        room.add_player('sid-x')


def test_can_start_needs_min_players():
    room = make_room(players=1)
    assert not room.can_start()
    room.add_player('sid-2')
    assert room.can_start()


def test_countdown_resets_player_stats():
    room = make_room(players=2)
    start_racing(room)
    tap_times(room, 'sid-1', 10)
    room.end_race(forced=True)
    room.reset_for_rematch()
    room.players['sid-1'].taps = 7
    room.begin_countdown()
    assert room.players['sid-1'].taps == 0
    assert room.state is RoomState.COUNTDOWN


def test_invalid_transition_raises():
    room = make_room(players=2)
    with pytest.raises(InvalidTransition):
        room.start_race()
    with pytest.raises(InvalidTransition):
        room.show_podium()


def test_taps_ignored_outside_racing():
    room = make_room(players=2)
    player, finished = room.record_tap('sid-1')
    assert player is None and not finished
    assert room.players['sid-1'].taps == 0


def test_position_reaches_exactly_100_and_never_exceeds():
    room = make_room(players=2)
    room.update_settings({'race_length': 'short'})
    start_racing(room)
    required = RACE_LENGTHS['short']['taps']
    player, finished = tap_times(room, 'sid-1', required - 1)
    assert player.position < 100 and not finished
    player, finished = room.record_tap('sid-1', now=T0 + 30)
    assert finished
    assert player.position == 100
    tap_times(room, 'sid-1', 25)
    assert player.position == 100
    assert player.taps == required


def test_finish_order_follows_arrival():
    room = make_room(players=3)
    room.update_settings({'race_length': 'short'})
    start_racing(room)
    tap_times(room, 'sid-2', 180, now=T0 + 20)
    tap_times(room, 'sid-1', 180, now=T0 + 21)
    assert [p.id for p in room.finish_order] == ['sid-2', 'sid-1']
    assert room.players['sid-2'].finish_position == 1
    assert room.players['sid-1'].finish_position == 2
    assert room.players['sid-2'].finish_time == 20_000
    assert not room.all_finished


def test_all_finished_ends_race_once():
    room = make_room(players=2)
    room.update_settings({'race_length': 'short'})
    start_racing(room)
    tap_times(room, 'sid-1', 180)
    tap_times(room, 'sid-2', 180)
    assert room.all_finished
    assert room.end_race(now=T0 + 60)
    assert room.state is RoomState.FINISH
    assert not room.end_race(now=T0 + 61)
    assert room.race_end_time == T0 + 60


def test_force_finish_marks_unfinished_dnf():
    room = make_room(players=3)
    room.update_settings({'race_length': 'short'})
    start_racing(room)
    tap_times(room, 'sid-1', 180)
    tap_times(room, 'sid-2', 90)
    assert room.end_race(forced=True)
    a, b, c = (room.players[s] for s in ('sid-1', 'sid-2', 'sid-3'))
    assert not a.dnf and a.finish_time is not None
    for player in (b, c):
        assert player.finished and player.dnf and player.finish_time is None
    assert room.state is RoomState.FINISH
    assert not room.end_race(forced=True)


def test_settings_only_change_in_lobby_and_clamp():
    room = make_room(players=2)
    assert room.update_settings({'race_length': 'long', 'medal_count': 25})
    assert room.race_length == 'long'
    assert room.taps_required == 600
    assert room.medal_count == 10
    room.update_settings({'medal_count': 0})
    assert room.medal_count == 1
    room.update_settings({'race_length': 'marathon', 'medal_count': 'many'})
    assert room.race_length == 'long'
    assert room.medal_count == 1
    room.begin_countdown()
    assert not room.update_settings({'race_length': 'short'})
    assert room.race_length == 'long'


def test_parse_settings_rejects_non_objects():
    with pytest.raises(InvalidSettings):
        parse_settings(['short'])
    assert parse_settings({'race_length': 'short', 'colour': 'red'}) == {'race_length': 'short'}


def test_rematch_resets_race_but_keeps_identity():
    room = make_room(players=2)
    room.update_settings({'race_length': 'short'})
    start_racing(room)
    tap_times(room, 'sid-1', 180)
    tap_times(room, 'sid-2', 50)
    room.end_race(forced=True)
    room.show_podium()
    room.show_results()
    before = {sid: (p.number, p.color_index, p.pattern_index) for sid, p in room.players.items()}

    assert room.reset_for_rematch()
    assert room.state is RoomState.LOBBY
    assert room.finish_order == []
    assert room.race_start_time is None
    for sid, player in room.players.items():
        assert (player.position, player.taps, player.finished, player.dnf) == (0, 0, False, False)
        assert (player.number, player.color_index, player.pattern_index) == before[sid]


def test_rematch_only_after_race():
    room = make_room(players=2)
    assert not room.reset_for_rematch()
    start_racing(room)
    assert not room.reset_for_rematch()


def test_disconnect_and_reconnect_restores_progress():
    room = make_room(players=2)
    start_racing(room)
    tap_times(room, 'sid-1', 42)
    original = room.players['sid-1']
    room.remove_player('sid-1', temporary=True, now=T0 + 20)
    assert 'sid-1' not in room.players

    player = room.reconnect_player('sid-new', 'sess-1', grace_sec=300, now=T0 + 200)
    assert player.id == 'sid-new'
    for field in ('taps', 'position', 'color_index', 'pattern_index', 'number', 'name'):
        assert getattr(player, field) == getattr(original, field)
    assert room.players['sid-new'] is player
    assert 'sess-1' not in room.disconnected


def test_reconnect_after_window_fails():
    room = make_room(players=2)
    room.remove_player('sid-1', temporary=True, now=T0)
    with pytest.raises(ReconnectFailed):
        room.reconnect_player('sid-new', 'sess-1', grace_sec=300, now=T0 + 301)
    with pytest.raises(ReconnectFailed):
        room.reconnect_player('sid-new', 'sess-1', grace_sec=300, now=T0 + 1)


def test_reconnect_unknown_session_fails():
    room = make_room(players=1)
    with pytest.raises(ReconnectFailed):
        room.reconnect_player('sid-new', 'nope', grace_sec=300)
    with pytest.raises(ReconnectFailed):
        room.reconnect_player('sid-new', None, grace_sec=300)


def test_explicit_leave_keeps_no_snapshot():
    room = make_room(players=2)
    room.remove_player('sid-1', temporary=False)
    assert len(room.disconnected) == 0


def test_reconnect_reassigns_slot_taken_meanwhile():
    room = make_room(players=1)
    room.remove_player('sid-1', temporary=True, now=T0)
    squatter = room.add_player('sid-2', requested_slot=0, now=T0 + 1)
    assert squatter.slot == 0
    player = room.reconnect_player('sid-3', 'sess-1', grace_sec=300, now=T0 + 2)
    assert player.color_index == 0
    assert player.pattern_index == 1


def test_leaving_finisher_is_dropped_then_restored_in_rank_order():
    room = make_room(players=3)
    room.update_settings({'race_length': 'short'})
    start_racing(room)
    tap_times(room, 'sid-1', 180)
    tap_times(room, 'sid-2', 180)
    room.remove_player('sid-1', temporary=True, now=T0 + 30)
    assert [p.id for p in room.finish_order] == ['sid-2']
    assert len(room.finish_order) <= len(room.players)

    _, just_finished = tap_times(room, 'sid-3', 180)
    assert just_finished
    assert room.players['sid-3'].finish_position == 3
    assert [p.finish_position for p in room.finish_order] == [2, 3]

    room.reconnect_player('sid-1b', 'sess-1', grace_sec=300, now=T0 + 40)
    assert [p.id for p in room.finish_order] == ['sid-1b', 'sid-2', 'sid-3']
    assert [p.finish_position for p in room.finish_order] == [1, 2, 3]


def test_reconnect_after_race_end_counts_as_dnf():
    room = make_room(players=2)
    room.update_settings({'race_length': 'short'})
    start_racing(room)
    tap_times(room, 'sid-1', 50)
    room.remove_player('sid-1', temporary=True, now=T0 + 20)
    tap_times(room, 'sid-2', 180)
    assert room.all_finished
    assert room.end_race(now=T0 + 30)

    player = room.reconnect_player('sid-1b', 'sess-1', grace_sec=300, now=T0 + 35)
    assert (player.finished, player.dnf, player.finish_time) == (True, True, None)
    assert player.taps == 50
    results = room.get_results()
    assert [p['id'] for p in results['finish_order']] == ['sid-2']
    assert [p['id'] for p in results['dnf']] == ['sid-1b']


def test_join_ignores_non_string_identity_fields():
    room = make_room()
    player = room.add_player('sid-1', name=['Ann'], session_id={'a': 1})
    assert player.name == 'Player 1'
    assert isinstance(player.session_id, str) and len(player.session_id) == 32
    assert room.add_player('sid-2', name=42, session_id=['x']).name == 'Player 2'


def test_host_transfers_to_earliest_joined_player():
    room = make_room(players=3)
    room.remove_player('sid-1', temporary=False)
    assert room.release_host('host-sid')
    assert room.host_connection_id == 'sid-2'
    assert not room.release_host('sid-3')


def test_host_release_with_nobody_left():
    room = make_room()
    assert room.release_host('host-sid')
    assert room.host_connection_id is None
    assert not room.is_host(None)


def test_positions_sorted_descending():
    room = make_room(players=3)
    start_racing(room)
    tap_times(room, 'sid-1', 3)
    tap_times(room, 'sid-2', 9)
    tap_times(room, 'sid-3', 6)
    positions = room.get_positions()
    assert [p['id'] for p in positions] == ['sid-2', 'sid-3', 'sid-1']
    assert set(positions[0]) == {'id', 'name', 'number', 'color', 'pattern', 'position', 'taps', 'finished'}


def test_state_snapshot():
    room = make_room(players=2)
    state = room.get_state()
    assert state['room_code'] == 'ABC123'
    assert state['host_id'] == 'host-sid'
    assert state['state'] == 'lobby'
    assert len(state['players']) == 2
    assert state['settings'] == {'race_length': 'medium', 'medal_count': 3, 'taps_required': 300}


def test_expiry_rules():
    room = make_room()
    assert not room.is_expired(3600, 7200, now=T0 + 3000)
    assert room.is_expired(3600, 7200, now=T0 + 3601)

    busy = make_room(players=1)
    assert not busy.is_expired(3600, 7200, now=T0 + 3601)
    assert busy.is_expired(3600, 7200, now=T0 + 7201)

    waiting = make_room(players=1)
    waiting.remove_player('sid-1', temporary=True, now=T0)
    assert not waiting.is_expired(3600, 7200, now=T0 + 3601)


def test_cancel_timers_bumps_epoch():
    class Handle:
        cancelled = False

        def cancel(self):
            self.cancelled = True

    room = make_room()
    handle = Handle()
    room.timers['countdown'] = handle
    room.cancel_timers()
    assert handle.cancelled
    assert room.timers == {}
    assert room.epoch == 1


def test_room_codes():
    taken = {'AAAAAA'}
    code = generate_room_code(lambda c: c in taken)
    assert len(code) == 6 and code not in taken
    assert all(c in string.ascii_uppercase + string.digits for c in code)
    assert normalize_room_code(' abc123 ') == 'ABC123'
    assert normalize_room_code('abc12') is None
    assert normalize_room_code('abc-12') is None
    assert normalize_room_code(None) is None
