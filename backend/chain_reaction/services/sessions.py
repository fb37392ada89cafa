"""Authoritative room registry for networked play.

The coordinator owns every room, the auto-match queue and the mapping from
connections to rooms. It never talks to the network itself: each operation
returns the messages to deliver and the Socket.IO layer emits them. A
rejected operation raises a ``ChainReactionError`` and leaves state as it
was.
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Deque, Dict, List, Optional

from chain_reaction.errors import (
    AlreadyInSession,
    GameNotActive,
    IllegalMove,
    RoomFull,
    RoomNotFound,
    StaleRoomExpired,
)
from chain_reaction.models import ROOM_CAPACITY, Room, RoomStatus, Seat, generate_room_code
from chain_reaction.services.game.engine import AUTHORITATIVE_MAX_ROUNDS
from chain_reaction.services.game.grid import grid_size

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SEC = 30 * 60


@dataclass
class Outbound:
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)
    to: Optional[str] = None


def _locked(fn):
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return fn(self, *args, **kwargs)
    return wrapper


def _coerce_coord(value) -> int:
    # bool is an int subclass; floats and numeric strings are not coordinates
    if isinstance(value, bool) or not isinstance(value, int):
        raise IllegalMove('Row and column must be integers', reason=IllegalMove.OUT_OF_BOUNDS)
    return value


class SessionCoordinator:
    def __init__(self, clock: Callable[[], float] = time.time,
                 code_factory: Callable[..., str] = generate_room_code,
                 stale_after: float = DEFAULT_STALE_AFTER_SEC,
                 max_rounds: int = AUTHORITATIVE_MAX_ROUNDS,
                 default_grid_size: str = 'MEDIUM'):
        self.clock = clock
        self.code_factory = code_factory
        self.stale_after = stale_after
        self.max_rounds = max_rounds
        self.default_grid_size = default_grid_size
        self.rooms: Dict[str, Room] = {}
        self.sid_to_code: Dict[str, str] = {}
        self.queue: Deque[str] = deque()
        self.connected: Dict[str, Optional[str]] = {}
        # Event handlers may run on several greenlets/threads; room mutations
        # and engine runs happen one at a time.
        self._lock = threading.RLock()

    # ---- Connections ----

    @_locked
    def connect(self, sid: str, user_id: Optional[str] = None) -> List[Outbound]:
        self.connected[sid] = user_id
        return []

    @_locked
    def disconnect(self, sid: str) -> List[Outbound]:
        self.connected.pop(sid, None)
        return self._depart(sid)

    def is_connected(self, sid: str) -> bool:
        return sid in self.connected

    # ---- Lookups ----

    def room_for(self, sid: str) -> Optional[Room]:
        code = self.sid_to_code.get(sid)
        return self.rooms.get(code) if code else None

    @_locked
    def room_state(self, code: str) -> Dict[str, Any]:
        room = self.rooms.get((code or '').strip().upper())
        if room is None:
            raise RoomNotFound()
        return room.to_dict()

    @_locked
    def stats(self) -> Dict[str, Any]:
        by_status: Dict[str, int] = {}
        for room in self.rooms.values():
            by_status[room.status.value] = by_status.get(room.status.value, 0) + 1
        return {
            'rooms': len(self.rooms),
            'byStatus': by_status,
            'queued': len(self.queue),
            'connections': len(self.connected),
        }

    # ---- Lobby ----

    @_locked
    def create_room(self, sid: str, user_id: Optional[str] = None, size: Optional[str] = None,
                    private: bool = True) -> List[Outbound]:
        self._ensure_free(sid)
        room = self._new_room(sid, user_id, size, private)
        logger.info(f"[room-created] code={room.code} size={room.grid_size} private={private}")
        return [Outbound('room-created', {
            'roomCode': room.code,
            'rows': room.rows,
            'cols': room.cols,
            'gridSize': room.grid_size,
        }, to=sid)]

    @_locked
    def join_room(self, sid: str, user_id: Optional[str], code: Optional[str]) -> List[Outbound]:
        self._ensure_free(sid)
        room = self.rooms.get((code or '').strip().upper())
        if room is None:
            raise RoomNotFound()
        if room.status != RoomStatus.WAITING or room.is_full:
            raise RoomFull()
        if user_id and any(seat.user_id == user_id for seat in room.seats):
            raise AlreadyInSession('Cannot join your own room')
        return self._seat_and_start(room, sid, user_id)

    @_locked
    def auto_match(self, sid: str, user_id: Optional[str] = None, size: Optional[str] = None) -> List[Outbound]:
        self._ensure_free(sid)
        for code in list(self.queue):
            room = self.rooms.get(code)
            if room is None or room.status != RoomStatus.WAITING or room.is_full or not self._host_connected(room):
                self.queue.remove(code)
                continue
            if user_id and room.seats[0].user_id == user_id:
                continue
            self.queue.remove(code)
            logger.info(f"[auto-match] paired code={code}")
            return self._seat_and_start(room, sid, user_id)

        room = self._new_room(sid, user_id, size, private=False)
        self.queue.append(room.code)
        logger.info(f"[auto-match] queued code={room.code} queue={len(self.queue)}")
        return [Outbound('waiting', {'message': 'Waiting for opponent...', 'roomCode': room.code}, to=sid)]

    @_locked
    def cancel_waiting(self, sid: str) -> List[Outbound]:
        room = self.room_for(sid)
        if room is None:
            return [Outbound('waiting-cancelled', {}, to=sid)]
        if room.status != RoomStatus.WAITING:
            raise GameNotActive('Nothing to cancel: the game has already started')
        self._close(room, RoomStatus.CANCELLED)
        logger.info(f"[waiting-cancelled] code={room.code}")
        return [Outbound('waiting-cancelled', {'roomCode': room.code}, to=sid)]

    @_locked
    def leave_room(self, sid: str) -> List[Outbound]:
        room = self.room_for(sid)
        messages = self._depart(sid)
        if room is not None:
            messages.append(Outbound('left', {'roomCode': room.code}, to=sid))
        return messages

    # ---- Play ----

    @_locked
    def submit_move(self, sid: str, row, col) -> List[Outbound]:
        room = self.room_for(sid)
        if room is None or room.status != RoomStatus.PLAYING:
            raise GameNotActive()
        slot = room.slot_of(sid)
        r, c = _coerce_coord(row), _coerce_coord(col)

        outcome = room.game.apply_move(r, c, slot)
        room.last_move = {'row': r, 'col': c, 'player': slot}
        room.touch(self.clock())
        current_turn = outcome.next_player if outcome.next_player is not None else (slot + 1) % ROOM_CAPACITY
        logger.info(
            f"[move] code={room.code} player={slot} cell=({r},{c}) rounds={outcome.resolution.rounds} "
            f"explosions={len(outcome.resolution.explosions)} winner={outcome.winner}"
        )

        payload = {
            'grid': room.grid.to_list(),
            'currentTurn': current_turn,
            'lastMove': dict(room.last_move),
            'eliminated': outcome.eliminated,
            'explosions': [e.to_dict() for e in outcome.resolution.explosions],
            'propagations': [e.to_dict() for e in outcome.resolution.propagations],
        }
        messages = self._broadcast(room, 'move-made', payload)
        if outcome.winner is not None:
            room.status = RoomStatus.FINISHED
            room.winner = outcome.winner
            messages += self._broadcast(room, 'game-over', {'winner': outcome.winner})
        return messages

    @_locked
    def request_rematch(self, sid: str) -> List[Outbound]:
        room, slot = self._finished_room(sid)
        room.rematch_declined_by = None
        room.rematch[slot] = True
        room.touch(self.clock())
        if all(room.rematch.get(i) for i in range(ROOM_CAPACITY)):
            room.new_game()
            room.status = RoomStatus.PLAYING
            logger.info(f"[rematch] code={room.code} started")
            return self._start_messages(room, rematch=True)
        payload = room.rematch_state()
        payload['requestedBy'] = slot
        return self._broadcast(room, 'rematch-requested', payload)

    @_locked
    def decline_rematch(self, sid: str) -> List[Outbound]:
        room, slot = self._finished_room(sid)
        room.rematch = {}
        room.rematch_declined_by = slot
        room.touch(self.clock())
        return self._broadcast(room, 'rematch-declined', {'declinedBy': slot})

    # ---- Housekeeping ----

    @_locked
    def sweep_stale(self, now: Optional[float] = None) -> List[Outbound]:
        now = self.clock() if now is None else now
        expired = [room for room in self.rooms.values() if now - room.touched_at > self.stale_after]
        messages: List[Outbound] = []
        for room in expired:
            payload = StaleRoomExpired().to_dict()
            payload['roomCode'] = room.code
            messages += self._broadcast(room, 'room-expired', payload)
            self._remove(room)
            logger.info(f"[sweep] expired code={room.code} status={room.status.value} idle={now - room.touched_at:.0f}s")
        return messages

    # ---- Internals ----

    def _ensure_free(self, sid: str) -> None:
        if sid in self.sid_to_code:
            raise AlreadyInSession(context={'roomCode': self.sid_to_code[sid]})

    def _host_connected(self, room: Room) -> bool:
        return bool(room.seats) and room.seats[0].sid in self.connected

    def _new_room(self, sid: str, user_id: Optional[str], size: Optional[str], private: bool) -> Room:
        name, rows, cols = grid_size(size or self.default_grid_size)
        code = self.code_factory(exists=lambda candidate: candidate in self.rooms)
        now = self.clock()
        room = Room(code=code, rows=rows, cols=cols, grid_size=name, private=private,
                    created_at=now, touched_at=now, max_rounds=self.max_rounds)
        room.seats.append(Seat(sid=sid, user_id=user_id))
        self.rooms[code] = room
        self.sid_to_code[sid] = code
        return room

    def _seat_and_start(self, room: Room, sid: str, user_id: Optional[str]) -> List[Outbound]:
        room.seats.append(Seat(sid=sid, user_id=user_id))
        self.sid_to_code[sid] = room.code
        if room.code in self.queue:
            self.queue.remove(room.code)
        room.new_game()
        room.status = RoomStatus.PLAYING
        room.touch(self.clock())
        logger.info(f"[game-start] code={room.code}")
        return self._start_messages(room)

    def _start_messages(self, room: Room, rematch: bool = False) -> List[Outbound]:
        messages = []
        for idx, seat in enumerate(room.seats):
            messages.append(Outbound('game-start', {
                'roomCode': room.code,
                'grid': room.grid.to_list(),
                'rows': room.rows,
                'cols': room.cols,
                'gridSize': room.grid_size,
                'playerIndex': idx,
                'currentTurn': room.current_turn,
                'rematch': rematch,
            }, to=seat.sid))
        return messages

    def _occupants(self, room: Room) -> List[str]:
        return [sid for sid in room.sids() if self.sid_to_code.get(sid) == room.code]

    def _broadcast(self, room: Room, event: str, payload: Dict[str, Any]) -> List[Outbound]:
        return [Outbound(event, dict(payload), to=sid) for sid in self._occupants(room)]

    def _finished_room(self, sid: str):
        room = self.room_for(sid)
        if room is None or room.status != RoomStatus.FINISHED:
            raise GameNotActive('Rematch is only available after a finished game')
        if len(self._occupants(room)) < ROOM_CAPACITY:
            raise GameNotActive('Opponent has left the room')
        return room, room.slot_of(sid)

    def _depart(self, sid: str) -> List[Outbound]:
        room = self.room_for(sid)
        if room is None:
            return []
        slot = room.slot_of(sid)
        messages: List[Outbound] = []

        if room.status == RoomStatus.PLAYING:
            winner = 1 - slot
            room.status = RoomStatus.PLAYER_LEFT
            room.winner = winner
            room.player_who_left = slot
            self.sid_to_code.pop(sid, None)
            messages += self._broadcast(room, 'opponent-disconnected', {'winner': winner, 'playerWhoLeft': slot})
            logger.info(f"[player-left] code={room.code} player={slot} winner={winner}")
        elif room.status == RoomStatus.WAITING:
            if slot == 0:
                self._close(room, RoomStatus.CANCELLED)
                logger.info(f"[room-cancelled] code={room.code}")
                return messages
            room.seats.pop(slot)
            self.sid_to_code.pop(sid, None)
        else:
            self.sid_to_code.pop(sid, None)
            if room.status == RoomStatus.FINISHED:
                room.rematch = {}
                room.rematch_declined_by = None
                messages += self._broadcast(room, 'opponent-left', {'playerWhoLeft': slot})

        room.touch(self.clock())
        if not self._occupants(room):
            self._remove(room)
        return messages

    def _close(self, room: Room, status: RoomStatus) -> None:
        room.status = status
        self._remove(room)

    def _remove(self, room: Room) -> None:
        self.rooms.pop(room.code, None)
        for sid in room.sids():
            if self.sid_to_code.get(sid) == room.code:
                self.sid_to_code.pop(sid, None)
        if room.code in self.queue:
            self.queue.remove(room.code)
