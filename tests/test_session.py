"""Tests for the game session: phase flow, timers, reconnects."""

from confessguess.catalog import Catalog
from confessguess.config import Settings
from confessguess.models import Phase
from confessguess.presence import PresenceTracker
from confessguess.protocol import Outbound
from confessguess.session import GameSession
from confessguess.timers import Countdown, ScheduledTask

from conftest import FAST, FROZEN, FakeClock, RecordingBroadcaster, start_game, wait_for


class InterruptingBroadcaster(RecordingBroadcaster):
    """Runs on_send once, right after the first message of the given event goes out."""

    def __init__(self, event, on_send):
        super().__init__()
        self.event = event
        self.on_send = on_send

    async def broadcast(self, code, event, payload=None):
        await super().broadcast(code, event, payload)
        if event == self.event and self.on_send is not None:
            on_send, self.on_send = self.on_send, None
            await on_send(code)


async def vote_all(session, code, votes):
    for name, vote in votes.items():
        await session.submit_vote(code, name, vote)


async def to_confession(session, code, confessor="alice"):
    """Drive a frozen session from voting to the confession phase with a fixed confessor."""
    await session._begin_voting(code)
    await vote_all(session, code, {"alice": "yes", "bob": "yes", "carol": "no"})
    await session._close_voting(code)
    state = session.games.get(code)
    state.initial_votes = {confessor: state.initial_votes[confessor]}
    await session._select_player(code)
    await session._begin_confession(code)
    return state


class TestStartGame:
    async def test_host_starts(self, session, broadcaster):
        code = await start_game(session)
        state = session.games.get(code)
        assert state.phase == Phase.Waiting
        assert state.scores == {"alice": 0, "bob": 0, "carol": 0}
        assert session.lobbies.get(code).started
        assert broadcaster.last(Outbound.GameStarted)["game_state"]["phase"] == "waiting"

    async def test_non_host_dropped(self, session, broadcaster):
        lobby = session.create_lobby("alice")
        await session.join_lobby(lobby.code, "bob")
        await session.start_game(lobby.code, "bob")
        assert session.games.get(lobby.code) is None
        assert broadcaster.all(Outbound.GameStarted) == []

    async def test_needs_two_players(self, session):
        lobby = session.create_lobby("alice")
        await session.start_game(lobby.code, "alice")
        assert session.games.get(lobby.code) is None

    async def test_unknown_code_is_noop(self, session, broadcaster):
        await session.start_game("NOPE", "alice")
        await session.submit_vote("NOPE", "alice", "yes")
        assert broadcaster.sent == []

    async def test_late_joiner_scores_zero(self, session):
        code = await start_game(session)
        session.games.get(code).scores["alice"] = 4
        lobby, reconnection = await session.join_lobby(code, "dave")
        assert not reconnection
        assert session.games.get(code).scores["dave"] == 0
        assert lobby.names()[-1] == "dave"


class TestVotingPhase:
    async def test_begin_voting(self, session, broadcaster):
        code = await start_game(session)
        await session._begin_voting(code)
        state = session.games.get(code)
        assert state.phase == Phase.InitialVoting
        assert state.current_prompt in session.catalog._prompts
        assert len(state.used_prompts) == 1
        assert state.time_remaining == 30
        assert isinstance(state.active_timer, Countdown)
        assert broadcaster.last(Outbound.TopicSelected)["topic"] == state.current_prompt

    async def test_all_voted_before_floor_does_not_advance(self, session):
        code = await start_game(session)
        await session._begin_voting(code)
        state = session.games.get(code)
        state.time_remaining = 20  # 10s elapsed
        await vote_all(session, code, {"alice": "yes", "bob": "yes", "carol": "no"})
        assert state.phase == Phase.InitialVoting

        state.time_remaining = 15
        await session.submit_vote(code, "carol", "yes")
        assert state.phase == Phase.InitialResults
        assert state.scores == {"alice": 1, "bob": 1, "carol": 1}

    async def test_majority_scoring(self, session, broadcaster):
        code = await start_game(session)
        await session._begin_voting(code)
        await vote_all(session, code, {"alice": "yes", "bob": "yes", "carol": "no"})
        await session._close_voting(code)
        state = session.games.get(code)
        assert state.scores == {"alice": 1, "bob": 1, "carol": 0}
        results = broadcaster.last(Outbound.InitialVoteResults)
        assert results["votes"] == {"yes": 2, "no": 1}
        assert results["majority_vote"] == "yes"

    async def test_vote_in_wrong_phase_dropped(self, session):
        code = await start_game(session)
        await session.submit_vote(code, "alice", "yes")
        assert session.games.get(code).initial_votes == {}

    async def test_no_voters_ends_game(self, session, broadcaster):
        code = await start_game(session)
        await session._begin_voting(code)
        await session._close_voting(code)
        await session._select_player(code)
        assert session.games.get(code).phase == Phase.Ended
        assert broadcaster.last(Outbound.GameEnded) is not None


class TestConfessionPhase:
    async def test_first_confession_wins(self, session):
        code = await start_game(session)
        state = await to_confession(session, code, "bob")
        assert state.phase == Phase.Confession
        await session.submit_confession(code, "bob", False)
        await session.submit_confession(code, "bob", True)
        assert state.confession is False
        assert state.phase == Phase.Guessing

    async def test_only_selected_player_confesses(self, session):
        code = await start_game(session)
        state = await to_confession(session, code, "bob")
        await session.submit_confession(code, "alice", False)
        assert state.phase == Phase.Confession
        assert state.confession is None

    async def test_timeout_resolves_honest(self, session):
        code = await start_game(session)
        state = await to_confession(session, code, "bob")
        await session._close_confession(code)  # what the 60s countdown runs on expiry
        assert state.confession is True
        assert state.phase == Phase.Guessing

    async def test_guess_scoring(self, session, broadcaster):
        code = await start_game(session)
        state = await to_confession(session, code, "carol")
        await session.submit_confession(code, "carol", False)
        state.time_remaining = 20
        await session.submit_guess(code, "alice", False)
        await session.submit_guess(code, "bob", True)
        await session.submit_guess(code, "carol", False)
        assert "carol" not in state.guesses
        assert state.phase == Phase.Guessing

        await session._close_guessing(code)
        assert state.phase == Phase.ConfessionResults
        # alice and bob had 1 from the yes-majority vote
        assert state.scores == {"alice": 4, "bob": 1, "carol": 0}
        results = broadcaster.last(Outbound.ConfessionResults)
        assert results["actual_confession"] is False
        assert results["selected_player"] == "carol"


class TestRoundEnd:
    async def test_scoreboard_then_waiting(self, session, broadcaster):
        code = await start_game(session)
        state = await to_confession(session, code)
        await session._close_confession(code)
        await session._close_guessing(code)
        await session._show_scoreboard(code)
        assert broadcaster.last(Outbound.ScoreboardUpdate)["scores"] == state.scores
        await session._finish_round(code)
        assert state.phase == Phase.Waiting
        assert state.round_number == 2

    async def test_round_limit_ends_game(self, session, broadcaster):
        code = await start_game(session)
        state = session.games.get(code)
        state.round_number = state.total_rounds
        state.phase = Phase.Scoreboard
        await session._finish_round(code)
        assert state.phase == Phase.Ended
        assert state.active_timer is None
        assert broadcaster.last(Outbound.GameEnded)["final_scores"] == state.scores

    async def test_exhausted_catalog_ends_game(self, broadcaster):
        session = GameSession(Catalog(["only one"]), broadcaster, settings=FROZEN)
        code = await start_game(session)
        state = session.games.get(code)
        await session._begin_voting(code)
        state.phase = Phase.Scoreboard
        await session._finish_round(code)
        assert state.phase == Phase.Ended
        session.shutdown()

    async def test_no_unused_prompt_ends_game_at_round_start(self, session, broadcaster):
        code = await start_game(session)
        state = session.games.get(code)
        state.used_prompts = set(range(len(session.catalog)))
        await session._begin_voting(code)
        assert state.phase == Phase.Ended
        assert state.current_prompt is None
        assert state.active_timer is None
        assert broadcaster.all(Outbound.TopicSelected) == []
        assert broadcaster.last(Outbound.GameEnded)["final_scores"] == {"alice": 0, "bob": 0, "carol": 0}


class TestTimers:
    async def test_one_timer_per_session(self, session):
        code = await start_game(session)
        state = session.games.get(code)
        first = state.active_timer
        await session._begin_voting(code)
        countdown = state.active_timer
        assert first.cancelled
        await vote_all(session, code, {"alice": "yes", "bob": "no", "carol": "no"})
        await session._close_voting(code)
        assert countdown.cancelled
        assert isinstance(state.active_timer, ScheduledTask)
        assert not state.active_timer.cancelled

    async def test_stale_expiry_has_no_effect(self, session):
        code = await start_game(session)
        await session._begin_voting(code)
        await vote_all(session, code, {"alice": "yes", "bob": "yes", "carol": "no"})
        await session._close_voting(code)
        state = session.games.get(code)
        scores = dict(state.scores)
        await session._close_voting(code)  # timer path losing the race
        assert state.phase == Phase.InitialResults
        assert state.scores == scores

    async def test_restart_replaces_state(self, session, broadcaster):
        code = await start_game(session)
        await session._begin_voting(code)
        old = session.games.get(code)
        old.scores["alice"] = 5
        old_timer = old.active_timer
        await session.restart_game(code, "bob")
        assert session.games.get(code) is old
        await session.restart_game(code, "alice")
        state = session.games.get(code)
        assert state is not old
        assert old_timer.cancelled
        assert state.scores == {"alice": 0, "bob": 0, "carol": 0}
        assert state.used_prompts == set()
        assert len(broadcaster.all(Outbound.GameStarted)) == 2

    async def test_restart_during_results_broadcast_drops_the_rest(self, catalog):
        holder = {}

        async def restart(code):
            await holder["session"].restart_game(code, "alice")

        broadcaster = InterruptingBroadcaster(Outbound.GamePhaseUpdate, None)
        session = holder["session"] = GameSession(catalog, broadcaster, settings=FROZEN)
        code = await start_game(session)
        await session._begin_voting(code)
        await vote_all(session, code, {"alice": "yes", "bob": "yes", "carol": "no"})
        broadcaster.on_send = restart
        await session._close_voting(code)
        assert broadcaster.all(Outbound.InitialVoteResults) == []
        assert broadcaster.sent[-1][1] == Outbound.GameStarted
        assert session.games.get(code).phase == Phase.Waiting
        session.shutdown()


class TestPresence:
    async def test_reconnect_keeps_score_and_position(self, session):
        code = await start_game(session)
        await session._begin_voting(code)
        await session.submit_vote(code, "bob", "no")
        state = session.games.get(code)
        state.scores["bob"] = 7
        await session.leave(code, "bob")
        lobby = session.lobbies.get(code)
        assert lobby.find("bob").connected is False
        assert (code, "bob") in session.presence

        assert await session.connect(code, "bob")
        assert lobby.find("bob").connected is True
        assert lobby.names() == ["alice", "bob", "carol"]
        assert state.scores["bob"] == 7
        assert (code, "bob") not in session.presence
        snap = session.snapshot(code, "bob")
        assert snap["user_vote"] == "no"
        assert session.snapshot(code, "carol")["user_vote"] is None

    async def test_eviction_removes_from_tallies(self, session, broadcaster):
        code = await start_game(session)
        await session._begin_voting(code)
        await vote_all(session, code, {"alice": "yes", "bob": "no", "carol": "no"})
        await session.leave(code, "carol")
        await session.evict(code, "carol")
        lobby = session.lobbies.get(code)
        assert "carol" not in lobby.names()
        roster = broadcaster.last(Outbound.LobbyUpdated)["lobby"]["participants"]
        assert [p["username"] for p in roster] == ["alice", "bob"]
        await session._close_voting(code)
        state = session.games.get(code)
        assert state.scores["alice"] == 0 and state.scores["bob"] == 0

    async def test_http_rejoin_without_socket_is_still_evicted(self, catalog, broadcaster):
        clock = FakeClock()
        session = GameSession(catalog, broadcaster, settings=FROZEN, presence=PresenceTracker(clock=clock))
        code = await start_game(session)
        await session.leave(code, "bob")
        lobby, reconnection = await session.join_lobby(code, "bob")
        assert reconnection
        assert lobby.find("bob").connected is False
        assert (code, "bob") in session.presence

        clock.now += 301
        assert await session.presence.sweep(session.evict) == [(code, "bob")]
        assert lobby.names() == ["alice", "carol"]
        session.shutdown()

    async def test_http_rejoin_does_not_block_early_close(self, session):
        code = await start_game(session)
        await session.leave(code, "bob")
        await session.join_lobby(code, "bob")
        await session._begin_voting(code)
        state = session.games.get(code)
        state.time_remaining = 10  # 20s elapsed
        await vote_all(session, code, {"alice": "yes", "carol": "yes"})
        assert state.phase == Phase.InitialResults

    async def test_evicting_host_hands_over(self, session):
        code = await start_game(session)
        await session.leave(code, "alice")
        await session.evict(code, "alice")
        lobby = session.lobbies.get(code)
        assert lobby.host == "bob"
        assert [p.name for p in lobby.participants if p.is_host] == ["bob"]

    async def test_evict_ignores_reconnected(self, session):
        code = await start_game(session)
        await session.leave(code, "bob")
        await session.connect(code, "bob")
        await session.evict(code, "bob")
        assert "bob" in session.lobbies.get(code).names()

    async def test_host_leaving_lobby_closes_it(self, session, broadcaster):
        lobby = session.create_lobby("alice")
        await session.join_lobby(lobby.code, "bob")
        await session.leave(lobby.code, "alice")
        assert session.lobbies.get(lobby.code) is None
        assert broadcaster.all(Outbound.LobbyClosed) == [{}]

    async def test_guest_leaving_lobby(self, session, broadcaster):
        lobby = session.create_lobby("alice")
        await session.join_lobby(lobby.code, "bob")
        await session.leave(lobby.code, "bob")
        assert lobby.names() == ["alice"]
        assert broadcaster.last(Outbound.LobbyUpdated)["lobby"]["participants"][0]["username"] == "alice"

    async def test_close_cancels_timer(self, session):
        code = await start_game(session)
        await session._begin_voting(code)
        timer = session.games.get(code).active_timer
        await session.close(code)
        assert timer.cancelled
        assert session.games.get(code) is None


class TestFullGame:
    async def test_timeouts_fire_once(self, broadcaster):
        settings = Settings(time_scale=FAST.time_scale, total_rounds=1)
        session = GameSession(Catalog(["googled myself"]), broadcaster, settings=settings)
        code = await start_game(session, ("alice", "bob"))
        state = session.games.get(code)
        await wait_for(lambda: state.phase == Phase.InitialVoting)
        await vote_all(session, code, {"alice": "yes", "bob": "yes"})
        await wait_for(lambda: state.phase != Phase.InitialVoting)
        # closed on the tick that reached the floor
        assert state.time_remaining == 15

        await wait_for(lambda: state.phase == Phase.Ended, timeout=5)
        zero_ticks = [m for m in broadcaster.all(Outbound.GameTimer) if m["time_remaining"] == 0]
        assert len(zero_ticks) == 2  # confession and guessing expired
        assert state.confession is True
        assert state.scores == {"alice": 1, "bob": 1}
        assert broadcaster.last(Outbound.GameEnded)["final_scores"] == {"alice": 1, "bob": 1}
        session.shutdown()

    async def test_played_round(self, broadcaster):
        settings = Settings(time_scale=FAST.time_scale, total_rounds=1)
        session = GameSession(Catalog(["googled myself", "lied about my age"]), broadcaster, settings=settings)
        code = await start_game(session, ("alice", "bob"))
        state = session.games.get(code)
        await wait_for(lambda: state.phase == Phase.InitialVoting)
        await vote_all(session, code, {"alice": "yes", "bob": "no"})
        await wait_for(lambda: state.phase == Phase.Confession)
        confessor = state.selected_player
        guesser = "bob" if confessor == "alice" else "alice"
        await session.submit_confession(code, confessor, False)
        assert state.phase == Phase.Guessing
        await session.submit_guess(code, guesser, False)
        await wait_for(lambda: state.phase == Phase.Ended, timeout=5)
        assert state.scores == {confessor: 0, guesser: 3}
        assert len(state.used_prompts) == 1
        session.shutdown()
