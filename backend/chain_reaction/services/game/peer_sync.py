"""Peer-authoritative play over a shared realtime store.

There is no server process in this deployment: the client whose turn it is
resolves its own move locally and publishes the result. The opponent
replays only the coordinates of that last move through the same engine, so
both boards animate and settle identically, and adopts whatever winner the
shared state declares. Nothing here validates the mover; this trust model
is separate from the socket server in ``chain_reaction.services.sessions``.

The store is anything with the ``RedisSharedStore`` interface from
``chain_reaction.services.game.shared_store``.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from chain_reaction.errors import AlreadyInSession, GameNotActive, RoomFull, RoomNotFound
from chain_reaction.models import ROOM_CAPACITY, RoomStatus, generate_room_code
from .engine import INTERACTIVE_MAX_ROUNDS
from .grid import Grid, create_grid, grid_size
from .turns import MoveOutcome, Phase, TurnStateMachine

logger = logging.getLogger(__name__)


class PeerSession:
    """One client's view of a two-player room held in a shared store."""

    def __init__(self, store, user_id: str, on_event: Optional[Callable[[str, Dict], None]] = None,
                 code_factory: Callable[..., str] = generate_room_code):
        self.store = store
        self.user_id = user_id
        self.on_event = on_event
        self.code_factory = code_factory
        self.events: List[Tuple[str, Dict]] = []
        self._reset_local()

    def _reset_local(self) -> None:
        self.room_code: Optional[str] = None
        self.player_index = -1
        self.is_host = False
        self.game: Optional[TurnStateMachine] = None
        self.winner: Optional[int] = None
        self.last_seq = 0
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def opponent_index(self) -> int:
        return 1 - self.player_index

    def _emit(self, event: str, payload: Optional[Dict] = None) -> None:
        payload = payload or {}
        self.events.append((event, payload))
        if self.on_event is not None:
            self.on_event(event, payload)

    # ---- Lobby ----

    def create_room(self, size: Optional[str] = None, private: bool = True) -> str:
        name, rows, cols = grid_size(size)
        code = self.code_factory(exists=lambda candidate: self.store.get(candidate) is not None)
        self.store.set(code, {
            'host': self.user_id,
            'guest': None,
            'gridSize': name,
            'rows': rows,
            'cols': cols,
            'private': private,
            'currentTurn': 0,
            'status': RoomStatus.WAITING.value,
            'createdAt': self.store.now(),
            'grid': create_grid(rows, cols).to_shared(),
        })
        self.room_code = code
        self.is_host = True
        self.player_index = 0
        self._listen()
        logger.info(f"[peer-room-created] code={code} size={name}")
        self._emit('room-created', {'roomCode': code, 'rows': rows, 'cols': cols})
        return code

    def join_room(self, code: str) -> None:
        code = (code or '').strip().upper()
        data = self.store.get(code)
        if data is None:
            raise RoomNotFound()
        if data.get('status') != RoomStatus.WAITING.value:
            raise RoomFull()
        if data.get('host') == self.user_id:
            raise AlreadyInSession('Cannot join your own room')

        self.room_code = code
        self.is_host = False
        self.player_index = 1
        self.store.update(code, {'guest': self.user_id, 'status': RoomStatus.PLAYING.value})
        self._listen()
        logger.info(f"[peer-joined] code={code}")

    def auto_match(self, size: Optional[str] = None) -> str:
        for code, data in self.store.waiting_rooms(limit=10):
            if data.get('host') != self.user_id and not data.get('private'):
                self.join_room(code)
                return code
        return self.create_room(size, private=False)

    def _listen(self) -> None:
        self._unsubscribe = self.store.subscribe(self.room_code, self.on_snapshot)

    # ---- Moves ----

    def place(self, r: int, c: int) -> MoveOutcome:
        """Resolve our own move locally and publish the settled board."""
        if self.game is None or self.game.is_over:
            raise GameNotActive()
        data = self.store.get(self.room_code)
        if data is None or data.get('status') != RoomStatus.PLAYING.value:
            raise GameNotActive()
        outcome = self.game.apply_move(r, c, self.player_index)
        self.last_seq = self.game.move_count
        self.store.update(self.room_code, {
            'grid': self.game.grid.to_shared(),
            'currentTurn': self.opponent_index,
            'lastMove': {'row': r, 'col': c, 'player': self.player_index, 'seq': self.last_seq},
        })
        if outcome.winner is not None:
            self.store.update(self.room_code, {
                'status': RoomStatus.FINISHED.value,
                'winner': outcome.winner,
                'finishedAt': self.store.now(),
            })
        return outcome

    def on_snapshot(self, data: Optional[Dict[str, Any]]) -> None:
        if self.room_code is None:
            return
        if data is None:
            self._cancelled()
            return

        status = data.get('status')
        if status == RoomStatus.PLAYING.value:
            self._on_playing(data)
        elif status == RoomStatus.FINISHED.value:
            self._on_finished(data)
        elif status == RoomStatus.PLAYER_LEFT.value:
            if data.get('playerWhoLeft') != self.player_index:
                self.winner = data.get('winner')
                if self.game is not None and not self.game.is_over:
                    self.game.winner = self.winner
                    self.game.phase = Phase.GAME_OVER
                self._emit('opponent-disconnected', {
                    'winner': self.winner,
                    'playerWhoLeft': data.get('playerWhoLeft'),
                })
        elif status == RoomStatus.CANCELLED.value:
            self._cancelled()

    def _on_playing(self, data: Dict[str, Any]) -> None:
        grid = Grid.from_shared(data.get('grid'))
        if grid is None:
            return
        if grid.is_empty():
            if self.game is None or self.game.move_count > 0 or self.game.is_over:
                self._start(data)
            return
        if self.game is None:
            return

        last = data.get('lastMove')
        if last and last.get('player') != self.player_index and int(last.get('seq') or 0) > self.last_seq:
            outcome = self.game.replay_move(last['row'], last['col'], last['player'])
            self.last_seq = int(last.get('seq') or self.game.move_count)
            if self.game.grid != grid:
                logger.warning(
                    f"[peer-diverged] code={self.room_code} seq={self.last_seq} adopting the mover's board"
                )
                self.game.grid = grid
            if not self.game.is_over:
                self.game.current_player = data.get('currentTurn', self.game.current_player)
            self._emit('move-made', {
                'grid': self.game.grid.to_list(),
                'currentTurn': data.get('currentTurn'),
                'lastMove': {'row': last['row'], 'col': last['col'], 'player': last['player']},
                'advisoryWinner': outcome.winner,
            })
        self._adopt_winner(data)

    def _on_finished(self, data: Dict[str, Any]) -> None:
        rematch = data.get('rematch') or {}
        mine = rematch.get(f'player{self.player_index}') is True
        theirs = rematch.get(f'player{self.opponent_index}') is True
        declined = rematch.get('declined')

        if declined is not None:
            if declined != self.player_index:
                self._emit('rematch-declined', {'declinedBy': declined})
        elif theirs and not mine:
            self._emit('rematch-requested', {'requestedBy': self.opponent_index})
        self._adopt_winner(data)

    def _adopt_winner(self, data: Dict[str, Any]) -> None:
        # The shared declaration is binding; local detection is only a hint
        winner = data.get('winner')
        if winner is None or winner == self.winner:
            return
        self.winner = winner
        if self.game is not None and not self.game.is_over:
            self.game.winner = winner
            self.game.phase = Phase.GAME_OVER
        self._emit('game-over', {'winner': winner})

    def _start(self, data: Dict[str, Any]) -> None:
        rows, cols = data['rows'], data['cols']
        self.game = TurnStateMachine(rows, cols, players=ROOM_CAPACITY, max_rounds=INTERACTIVE_MAX_ROUNDS)
        self.winner = None
        self.last_seq = 0
        self._emit('game-start', {
            'roomCode': self.room_code,
            'playerIndex': self.player_index,
            'rows': rows,
            'cols': cols,
            'grid': self.game.grid.to_list(),
            'currentTurn': self.game.current_player,
        })

    def _cancelled(self) -> None:
        code = self.room_code
        self._detach()
        self._emit('room-cancelled', {'roomCode': code})

    # ---- Rematch ----

    def request_rematch(self) -> None:
        data = self._require_finished()
        self.store.update(self.room_code, {
            f'rematch/player{self.player_index}': True,
            'rematch/declined': None,
        })
        rematch = (data.get('rematch') or {})
        if rematch.get(f'player{self.opponent_index}') is True and rematch.get('declined') is None:
            self._reset_shared(data)

    def accept_rematch(self) -> None:
        self.request_rematch()

    def decline_rematch(self) -> None:
        self._require_finished()
        self.store.update(self.room_code, {
            'rematch/player0': None,
            'rematch/player1': None,
            'rematch/declined': self.player_index,
        })

    def _require_finished(self) -> Dict[str, Any]:
        data = self.store.get(self.room_code) if self.room_code else None
        if data is None or data.get('status') != RoomStatus.FINISHED.value:
            raise GameNotActive('Rematch is only available after a finished game')
        return data

    def _reset_shared(self, data: Dict[str, Any]) -> None:
        self.store.update(self.room_code, {
            'status': RoomStatus.PLAYING.value,
            'currentTurn': 0,
            'winner': None,
            'grid': create_grid(data['rows'], data['cols']).to_shared(),
            'rematch': None,
            'lastMove': None,
        })

    # ---- Leaving ----

    def leave(self) -> None:
        if self.room_code is None:
            return
        code = self.room_code
        is_host = self.is_host
        slot = self.player_index
        self._detach()

        data = self.store.get(code)
        if data is None:
            return
        if data.get('status') == RoomStatus.PLAYING.value:
            self.store.update(code, {
                'status': RoomStatus.PLAYER_LEFT.value,
                'playerWhoLeft': slot,
                'winner': 1 - slot,
            })
        elif is_host:
            self.store.update(code, {'status': RoomStatus.CANCELLED.value})
        else:
            self.store.update(code, {'guest': None, 'status': RoomStatus.WAITING.value})
        logger.info(f"[peer-left] code={code} player={slot}")

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._reset_local()
