"""Game session: the mutation surface for lobbies and running games.

Every entry point looks its session up by code and becomes a no-op when the
lobby or game is gone. Player input that is out of phase or from the wrong
participant is dropped without telling the sender; clients gate their own UI.

Phase steps run from scheduled tasks. Each step checks that the session still
holds the same GameState and that the phase is the one it expects, so a step
that lost a race (timer vs. everyone-responded, or a restart) does nothing.
"""

import logging
from typing import Awaitable, Callable, Optional

from .catalog import Catalog
from .config import Settings
from .engine import GameEngine
from .models import GameState, Lobby, Phase
from .presence import PresenceTracker
from .protocol import Outbound
from .store import GameRegistry, LobbyRegistry
from .sync import build_snapshot
from .timers import Countdown, ScheduledTask

logger = logging.getLogger(__name__)

Step = Callable[[str], Awaitable[None]]


class GameSession:
    def __init__(
        self,
        catalog: Catalog,
        broadcaster,
        settings: Optional[Settings] = None,
        lobbies: Optional[LobbyRegistry] = None,
        games: Optional[GameRegistry] = None,
        presence: Optional[PresenceTracker] = None,
        engine: Optional[GameEngine] = None,
    ):
        self.settings = settings or Settings()
        self.catalog = catalog
        self.broadcaster = broadcaster
        self.lobbies = lobbies if lobbies is not None else LobbyRegistry()
        self.games = games if games is not None else GameRegistry()
        self.presence = presence if presence is not None else PresenceTracker(self.settings.grace_seconds)
        self.engine = engine or GameEngine(min_response=self.settings.durations.min_response)

    def _lookup(self, code: str) -> tuple[Optional[Lobby], Optional[GameState]]:
        return self.lobbies.get(code), self.games.get(code)

    async def _emit(self, code: str, event: Outbound, payload: dict = None):
        await self.broadcaster.broadcast(code, event, payload)

    async def _emit_lobby(self, lobby: Lobby):
        await self._emit(lobby.code, Outbound.LobbyUpdated, {"lobby": lobby.to_dict()})

    # Timers: one per GameState, replaced on every phase step

    def _cancel_timer(self, state: GameState):
        if state.active_timer is not None:
            state.active_timer.cancel()
            state.active_timer = None

    def _is_current(self, code: str, state: GameState) -> bool:
        """False once the session was closed or its game replaced by a restart."""
        return self.games.get(code) is state

    def _guarded(self, code: str, state: GameState, step: Step) -> Callable[[], Awaitable[None]]:
        async def fire():
            if self._is_current(code, state):
                await step(code)
        return fire

    def _after(self, code: str, state: GameState, seconds: int, step: Step):
        self._cancel_timer(state)
        state.active_timer = ScheduledTask(
            self.settings.delay(seconds), self._guarded(code, state, step), name=f"{code}:{step.__name__}"
        )

    def _start_countdown(self, code: str, state: GameState, seconds: int, on_expire: Step):
        self._cancel_timer(state)
        state.timer_duration = seconds
        state.time_remaining = seconds

        async def tick(remaining: int):
            if not self._is_current(code, state):
                return
            state.time_remaining = remaining
            await self._emit(code, Outbound.GameTimer, {"time_remaining": remaining})
            if remaining > 0:
                await self._check_early(code)

        state.active_timer = Countdown(
            seconds,
            tick,
            self._guarded(code, state, on_expire),
            interval=self.settings.delay(1),
            name=f"{code}:{on_expire.__name__}",
        )

    # Lobby membership

    def create_lobby(self, host_name: str) -> Lobby:
        lobby = self.lobbies.create(host_name)
        logger.info("Lobby created: %s (host %s)", lobby.code, host_name)
        return lobby

    async def join_lobby(self, code: str, name: str) -> tuple[Optional[Lobby], bool]:
        """Add name to the roster, or report a known name as a reconnection. Returns (lobby, reconnection)."""
        lobby, state = self._lookup(code)
        if lobby is None:
            return None, False
        existing = lobby.find(name)
        if existing is not None:
            # Stays disconnected and tracked until a socket binds with connect()
            return lobby, True
        lobby.add(name)
        if state is not None:
            state.scores.setdefault(name, 0)
        logger.info("Participant joined: %s (%s)", code, name)
        return lobby, False

    async def connect(self, code: str, name: str) -> bool:
        """A connection bound itself to (code, name). Returns True if a game snapshot should follow."""
        lobby, state = self._lookup(code)
        if lobby is None:
            return False
        p = lobby.find(name)
        if p is not None:
            p.connected = True
            if self.presence.clear(code, name):
                logger.info("Participant reconnected: %s (%s)", code, name)
        await self._emit_lobby(lobby)
        return state is not None and state.in_progress and state.phase != Phase.Waiting

    async def leave(self, code: str, name: str):
        """Voluntary leave or dropped connection."""
        lobby, state = self._lookup(code)
        if lobby is None:
            return
        p = lobby.find(name)
        if p is None:
            return
        if state is not None and state.in_progress:
            # Keep them on the roster so score and eligibility survive a reconnect
            if p.connected:
                p.connected = False
                self.presence.track(code, name)
                logger.info("Participant disconnected: %s (%s)", code, name)
            await self._emit_lobby(lobby)
            return
        was_host = name == lobby.host
        lobby.remove(name)
        logger.info("Participant left: %s (%s)", code, name)
        if was_host or not lobby.participants:
            await self.close(code)
        else:
            await self._emit_lobby(lobby)

    async def evict(self, code: str, name: str):
        """Grace period expired without a reconnect."""
        lobby = self.lobbies.get(code)
        if lobby is None:
            return
        p = lobby.find(name)
        if p is None or p.connected:
            return
        lobby.remove(name)
        logger.info("Participant evicted: %s (%s)", code, name)
        if not lobby.participants:
            await self.close(code)
        else:
            await self._emit_lobby(lobby)

    async def close(self, code: str):
        """Destroy the session: timer, lobby, game and presence entries."""
        lobby = self.lobbies.pop(code)
        state = self.games.pop(code)
        if state is not None:
            self._cancel_timer(state)
        self.presence.forget_session(code)
        if lobby is not None or state is not None:
            logger.info("Lobby closed: %s", code)
            await self._emit(code, Outbound.LobbyClosed)

    def shutdown(self):
        for code in self.games:
            state = self.games.get(code)
            if state is not None:
                self._cancel_timer(state)

    # Game lifecycle

    async def start_game(self, code: str, name: str):
        lobby, state = self._lookup(code)
        if lobby is None:
            return
        if name != lobby.host:
            logger.debug("Start dropped (%s, %s): not host", code, name)
            return
        if len(lobby.participants) < self.settings.min_players:
            logger.debug("Start dropped (%s): need %d players", code, self.settings.min_players)
            return
        if state is not None and state.in_progress:
            logger.debug("Start dropped (%s): game in progress", code)
            return
        await self._new_game(code, lobby)

    async def restart_game(self, code: str, name: str):
        """Host only. Fresh scores and prompt history for the current roster."""
        lobby, state = self._lookup(code)
        if lobby is None or state is None:
            return
        if name != lobby.host:
            logger.debug("Restart dropped (%s, %s): not host", code, name)
            return
        await self._new_game(code, lobby)

    async def _new_game(self, code: str, lobby: Lobby):
        old = self.games.get(code)
        if old is not None:
            self._cancel_timer(old)
        state = self.games.put(code, GameState.for_roster(lobby.names(), self.settings.total_rounds))
        lobby.started = True
        self._after(code, state, self.settings.durations.game_start, self._begin_voting)
        logger.info("Game started: %s, players=%d", code, len(lobby.participants))
        await self._emit(code, Outbound.GameStarted, {"lobby": lobby.to_dict(), "game_state": state.to_dict()})

    async def _end_game(self, code: str):
        lobby, state = self._lookup(code)
        if state is None:
            return
        state.phase = Phase.Ended
        self._cancel_timer(state)
        if lobby is not None:
            lobby.started = False
        logger.info("Game ended: %s, scores=%s", code, state.scores)
        await self._emit(code, Outbound.GameEnded, {"final_scores": dict(state.scores)})

    # Player input

    async def submit_vote(self, code: str, name: str, vote):
        lobby, state = self._lookup(code)
        if lobby is None or state is None:
            return
        err = self.engine.apply_vote(lobby, state, name, vote)
        if err:
            logger.debug("Vote dropped (%s, %s): %s", code, name, err)
            return
        await self._check_early(code)

    async def submit_confession(self, code: str, name: str, confession):
        lobby, state = self._lookup(code)
        if lobby is None or state is None:
            return
        err = self.engine.apply_confession(state, name, confession)
        if err:
            logger.debug("Confession dropped (%s, %s): %s", code, name, err)
            return
        await self._close_confession(code)

    async def submit_guess(self, code: str, name: str, guess):
        lobby, state = self._lookup(code)
        if lobby is None or state is None:
            return
        err = self.engine.apply_guess(lobby, state, name, guess)
        if err:
            logger.debug("Guess dropped (%s, %s): %s", code, name, err)
            return
        await self._check_early(code)

    def snapshot(self, code: str, name: str) -> Optional[dict]:
        lobby, state = self._lookup(code)
        return build_snapshot(lobby, state, name)

    async def _check_early(self, code: str):
        lobby, state = self._lookup(code)
        if lobby is None or state is None:
            return
        if not self.engine.can_close_early(lobby, state):
            return
        if state.phase == Phase.InitialVoting:
            await self._close_voting(code)
        elif state.phase == Phase.Guessing:
            await self._close_guessing(code)

    # Phase steps

    async def _begin_voting(self, code: str):
        lobby, state = self._lookup(code)
        if lobby is None or state is None or state.phase != Phase.Waiting:
            return
        idx = self.catalog.pick_unused(state.used_prompts, self.engine.rng)
        if idx is None:
            logger.info("Prompts exhausted: %s", code)
            await self._end_game(code)
            return
        state.begin_round(self.catalog[idx], idx)
        self._start_countdown(code, state, self.settings.durations.voting, self._close_voting)
        logger.info("Round %d/%d started: %s", state.round_number, state.total_rounds, code)
        await self._emit(code, Outbound.TopicSelected, {"topic": state.current_prompt})
        if not self._is_current(code, state):
            return
        await self._emit(code, Outbound.GamePhaseUpdate, {
            "phase": state.phase.value,
            "round_number": state.round_number,
            "total_rounds": state.total_rounds,
        })

    async def _close_voting(self, code: str):
        lobby, state = self._lookup(code)
        if lobby is None or state is None or state.phase != Phase.InitialVoting:
            return
        self._cancel_timer(state)
        result = self.engine.resolve_votes(lobby, state)
        self._after(code, state, self.settings.durations.initial_results, self._select_player)
        await self._emit(code, Outbound.GamePhaseUpdate, {"phase": state.phase.value})
        if not self._is_current(code, state):
            return
        await self._emit(code, Outbound.InitialVoteResults, {
            "votes": result.tally,
            "majority_vote": result.majority.value if result.majority else None,
            "topic": state.current_prompt,
        })

    async def _select_player(self, code: str):
        lobby, state = self._lookup(code)
        if lobby is None or state is None or state.phase != Phase.InitialResults:
            return
        name = self.engine.select_confessor(lobby, state)
        if name is None:
            logger.info("Nobody eligible to confess: %s", code)
            await self._end_game(code)
            return
        self._after(code, state, self.settings.durations.player_selection, self._begin_confession)
        await self._emit(code, Outbound.GamePhaseUpdate, {"phase": state.phase.value, "selected_player": name})
        if not self._is_current(code, state):
            return
        await self._emit(code, Outbound.PlayerSelected, {
            "selected_player": name,
            "player_vote": state.selected_vote.value if state.selected_vote else None,
        })

    async def _begin_confession(self, code: str):
        state = self.games.get(code)
        if state is None or state.phase != Phase.PlayerSelection:
            return
        state.phase = Phase.Confession
        state.confession = None
        self._start_countdown(code, state, self.settings.durations.confession, self._close_confession)
        await self._emit(code, Outbound.GamePhaseUpdate, {
            "phase": state.phase.value,
            "selected_player": state.selected_player,
        })

    async def _close_confession(self, code: str):
        state = self.games.get(code)
        if state is None or state.phase != Phase.Confession:
            return
        self._cancel_timer(state)
        if state.confession is None:
            state.confession = True
        await self._begin_guessing(code)

    async def _begin_guessing(self, code: str):
        state = self.games.get(code)
        if state is None or state.phase != Phase.Confession:
            return
        state.phase = Phase.Guessing
        state.guesses = {}
        self._start_countdown(code, state, self.settings.durations.guessing, self._close_guessing)
        await self._emit(code, Outbound.GamePhaseUpdate, {
            "phase": state.phase.value,
            "selected_player": state.selected_player,
        })

    async def _close_guessing(self, code: str):
        lobby, state = self._lookup(code)
        if lobby is None or state is None or state.phase != Phase.Guessing:
            return
        self._cancel_timer(state)
        result = self.engine.resolve_guesses(lobby, state)
        self._after(code, state, self.settings.durations.confession_results, self._show_scoreboard)
        await self._emit(code, Outbound.GamePhaseUpdate, {"phase": state.phase.value})
        if not self._is_current(code, state):
            return
        await self._emit(code, Outbound.ConfessionResults, {
            "guesses": result.tally,
            "actual_confession": result.actual,
            "selected_player": result.confessor,
        })

    async def _show_scoreboard(self, code: str):
        state = self.games.get(code)
        if state is None or state.phase != Phase.ConfessionResults:
            return
        state.phase = Phase.Scoreboard
        self._after(code, state, self.settings.durations.scoreboard, self._finish_round)
        await self._emit(code, Outbound.GamePhaseUpdate, {"phase": state.phase.value})
        if not self._is_current(code, state):
            return
        await self._emit(code, Outbound.ScoreboardUpdate, {"scores": dict(state.scores)})

    async def _finish_round(self, code: str):
        state = self.games.get(code)
        if state is None or state.phase != Phase.Scoreboard:
            return
        if self.engine.finish_round(state, self.catalog) == Phase.Ended:
            await self._end_game(code)
            return
        self._after(code, state, self.settings.durations.between_rounds, self._begin_voting)
        await self._emit(code, Outbound.GamePhaseUpdate, {
            "phase": state.phase.value,
            "round_number": state.round_number,
        })
