import pytest

from chain_reaction.errors import AlreadyInSession, GameNotActive, IllegalMove, RoomFull, RoomNotFound
from chain_reaction.models import RoomStatus
from chain_reaction.services.sessions import SessionCoordinator
from conftest import board


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def codes(*values):
    it = iter(values)

    def factory(exists=None):
        return next(it)
    return factory


def sent(messages, sid, event):
    return [m.payload for m in messages if m.to == sid and m.event == event]


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def coord(clock):
    c = SessionCoordinator(clock=clock, code_factory=codes('ROOM', 'ABCD', 'WXYZ'), stale_after=60,
                           default_grid_size='SMALL')
    for sid, user in [('a', 'alice'), ('b', 'bob'), ('c', 'cara')]:
        c.connect(sid, user)
    return c


def start_game(coord):
    coord.create_room('a', 'alice')
    return coord.join_room('b', 'bob', 'room')


def test_create_and_join_starts_the_game(coord):
    out = coord.create_room('a', 'alice')
    assert sent(out, 'a', 'room-created') == [{'roomCode': 'ROOM', 'rows': 6, 'cols': 4, 'gridSize': 'SMALL'}]
    assert coord.rooms['ROOM'].status == RoomStatus.WAITING

    out = coord.join_room('b', 'bob', ' room ')
    host, guest = sent(out, 'a', 'game-start')[0], sent(out, 'b', 'game-start')[0]
    assert (host['playerIndex'], guest['playerIndex']) == (0, 1)
    assert host['currentTurn'] == 0
    assert (guest['rows'], guest['cols']) == (6, 4)
    assert len(guest['grid']) == 6
    assert coord.rooms['ROOM'].status == RoomStatus.PLAYING


def test_join_errors(coord):
    with pytest.raises(RoomNotFound):
        coord.join_room('b', 'bob', 'NOPE')

    coord.create_room('a', 'alice')
    with pytest.raises(AlreadyInSession):
        coord.create_room('a', 'alice')
    # same account from a second tab
    coord.connect('a2', 'alice')
    with pytest.raises(AlreadyInSession):
        coord.join_room('a2', 'alice', 'ROOM')

    coord.join_room('b', 'bob', 'ROOM')
    with pytest.raises(RoomFull):
        coord.join_room('c', 'cara', 'ROOM')
    assert 'c' not in coord.sid_to_code


def test_auto_match_pairs_fifo(coord):
    out = coord.auto_match('a', 'alice')
    assert sent(out, 'a', 'waiting')[0]['roomCode'] == 'ROOM'
    assert list(coord.queue) == ['ROOM']

    out = coord.auto_match('b', 'bob')
    assert sent(out, 'a', 'game-start')[0]['playerIndex'] == 0
    assert sent(out, 'b', 'game-start')[0]['playerIndex'] == 1
    assert list(coord.queue) == []


def test_auto_match_skips_a_disconnected_head(coord):
    coord.auto_match('a', 'alice')
    # host vanished without the disconnect being processed yet
    coord.connected.pop('a')
    out = coord.auto_match('b', 'bob')
    assert sent(out, 'b', 'waiting')[0]['roomCode'] == 'ABCD'
    assert list(coord.queue) == ['ABCD']


def test_auto_match_does_not_pair_a_user_with_themselves(coord):
    coord.auto_match('a', 'alice')
    coord.connect('a2', 'alice')
    out = coord.auto_match('a2', 'alice')
    assert sent(out, 'a2', 'waiting')
    assert list(coord.queue) == ['ROOM', 'ABCD']


def test_cancel_waiting(coord):
    coord.auto_match('a', 'alice')
    out = coord.cancel_waiting('a')
    assert sent(out, 'a', 'waiting-cancelled') == [{'roomCode': 'ROOM'}]
    assert coord.rooms == {}
    assert list(coord.queue) == []
    assert 'a' not in coord.sid_to_code

    coord.create_room('a', 'alice')
    coord.join_room('b', 'bob', 'ABCD')
    with pytest.raises(GameNotActive):
        coord.cancel_waiting('a')


def test_move_before_opponent_joins_is_rejected(coord):
    coord.create_room('a', 'alice')
    with pytest.raises(GameNotActive):
        coord.submit_move('a', 0, 0)


def test_move_rejections_do_not_mutate(coord):
    start_game(coord)
    room = coord.rooms['ROOM']
    with pytest.raises(IllegalMove) as err:
        coord.submit_move('b', 0, 0)
    assert err.value.reason == 'not_your_turn'

    coord.submit_move('a', 2, 2)
    snapshot = room.grid.to_list()
    touched = room.touched_at
    with pytest.raises(IllegalMove) as err:
        coord.submit_move('b', 2, 2)
    assert err.value.reason == 'cell_owned'
    with pytest.raises(IllegalMove) as err:
        coord.submit_move('b', 9, 9)
    assert err.value.reason == 'out_of_bounds'
    with pytest.raises(IllegalMove):
        coord.submit_move('b', 'x', None)
    assert room.grid.to_list() == snapshot
    assert room.current_turn == 1
    assert room.touched_at == touched

    with pytest.raises(GameNotActive):
        coord.submit_move('c', 0, 0)


def test_accepted_move_is_broadcast(coord):
    start_game(coord)
    out = coord.submit_move('a', 0, 0)
    for sid in ('a', 'b'):
        msg = sent(out, sid, 'move-made')[0]
        assert msg['currentTurn'] == 1
        assert msg['lastMove'] == {'row': 0, 'col': 0, 'player': 0}
        assert msg['grid'][0][0] == {'count': 1, 'owner': 0, 'criticalMass': 2}
    assert not [m for m in out if m.event == 'game-over']


def test_winning_move_finishes_the_room(coord):
    start_game(coord)
    room = coord.rooms['ROOM']
    room.game.grid = board(6, 4, [(0, 0, 1, 0), (0, 1, 1, 1)])
    room.game.has_moved = [True, True]

    out = coord.submit_move('a', 0, 0)
    assert sent(out, 'b', 'game-over') == [{'winner': 0}]
    assert sent(out, 'a', 'game-over') == [{'winner': 0}]
    # game-over follows the board update
    assert [m.event for m in out if m.to == 'b'] == ['move-made', 'game-over']
    assert room.status == RoomStatus.FINISHED
    assert room.winner == 0
    with pytest.raises(GameNotActive):
        coord.submit_move('b', 5, 3)


def finish(coord):
    start_game(coord)
    room = coord.rooms['ROOM']
    room.game.grid = board(6, 4, [(0, 0, 1, 0), (0, 1, 1, 1)])
    room.game.has_moved = [True, True]
    coord.submit_move('a', 0, 0)
    return room


def test_rematch_when_both_request(coord):
    room = finish(coord)
    with pytest.raises(GameNotActive):
        coord.decline_rematch('c')

    out = coord.request_rematch('a')
    assert sent(out, 'b', 'rematch-requested')[0]['player0'] is True
    assert sent(out, 'b', 'rematch-requested')[0]['player1'] is False

    out = coord.request_rematch('b')
    starts = [m for m in out if m.event == 'game-start']
    assert {m.to for m in starts} == {'a', 'b'}
    assert all(m.payload['rematch'] for m in starts)
    assert room.status == RoomStatus.PLAYING
    assert room.grid.is_empty()
    assert room.current_turn == 0
    assert room.winner is None
    assert room.rematch == {}


def test_decline_then_fresh_request_cycle(coord):
    room = finish(coord)
    coord.request_rematch('a')
    out = coord.decline_rematch('b')
    assert sent(out, 'a', 'rematch-declined') == [{'declinedBy': 1}]
    assert room.rematch == {}
    assert room.status == RoomStatus.FINISHED

    # a later request starts over: player 0's earlier flag is gone
    out = coord.request_rematch('b')
    assert sent(out, 'a', 'rematch-requested')[0] == {
        'player0': False, 'player1': True, 'declined': None, 'requestedBy': 1,
    }
    assert room.status == RoomStatus.FINISHED


def test_disconnect_mid_game_awards_the_win(coord):
    start_game(coord)
    out = coord.disconnect('a')
    assert sent(out, 'b', 'opponent-disconnected') == [{'winner': 1, 'playerWhoLeft': 0}]
    room = coord.rooms['ROOM']
    assert room.status == RoomStatus.PLAYER_LEFT
    with pytest.raises(GameNotActive):
        coord.request_rematch('b')
    # last occupant leaving removes the room
    out = coord.leave_room('b')
    assert sent(out, 'b', 'left') == [{'roomCode': 'ROOM'}]
    assert coord.rooms == {}


def test_creator_leaving_a_waiting_room_cancels_it(coord):
    coord.create_room('a', 'alice')
    assert coord.disconnect('a') == []
    assert coord.rooms == {}
    with pytest.raises(RoomNotFound):
        coord.join_room('b', 'bob', 'ROOM')


def test_leaving_after_the_game_blocks_rematch(coord):
    finish(coord)
    coord.request_rematch('b')
    out = coord.leave_room('a')
    assert sent(out, 'b', 'opponent-left') == [{'playerWhoLeft': 0}]
    with pytest.raises(GameNotActive):
        coord.request_rematch('b')


def test_stale_rooms_are_swept_after_notice(coord, clock):
    start_game(coord)
    coord.create_room('c', 'cara')

    clock.now += 50
    coord.submit_move('a', 0, 0)   # activity keeps ROOM alive
    clock.now += 30

    out = coord.sweep_stale()
    expired = sent(out, 'c', 'room-expired')
    assert expired and expired[0]['roomCode'] == 'ABCD'
    assert expired[0]['reason'] == 'room_expired'
    assert 'ABCD' not in coord.rooms
    assert 'ROOM' in coord.rooms
    assert 'c' not in coord.sid_to_code

    out = coord.sweep_stale(now=clock.now + 61)
    assert {m.to for m in out} == {'a', 'b'}
    assert coord.rooms == {}
    assert coord.sid_to_code == {}


def test_room_state_and_stats(coord):
    start_game(coord)
    state = coord.room_state('room')
    assert state['status'] == 'playing'
    assert state['players'] == 2
    with pytest.raises(RoomNotFound):
        coord.room_state('ZZZZ')
    stats = coord.stats()
    assert stats['rooms'] == 1
    assert stats['byStatus'] == {'playing': 1}
    assert stats['connections'] == 3


@pytest.mark.parametrize('row, col', [(1.9, 0), ('1', 0), (0, True), (None, 0)])
def test_malformed_coordinates_are_out_of_bounds(coord, row, col):
    start_game(coord)
    room = coord.rooms['ROOM']
    with pytest.raises(IllegalMove) as err:
        coord.submit_move('a', row, col)
    assert err.value.reason == 'out_of_bounds'
    assert room.grid.is_empty()
    assert room.current_turn == 0
