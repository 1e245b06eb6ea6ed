"""Reconnect snapshots: what one participant should see right now."""

from typing import Optional

from .models import GameState, Lobby, Phase


def prior_input(state: GameState, name: str):
    """The caller's own input relevant to the current phase, or None."""
    if state.phase in (Phase.InitialVoting, Phase.InitialResults):
        vote = state.initial_votes.get(name)
        return vote.value if vote is not None else None
    if state.phase == Phase.Confession:
        return state.confession
    if state.phase in (Phase.Guessing, Phase.ConfessionResults):
        return state.guesses.get(name)
    return None


def build_snapshot(lobby: Optional[Lobby], state: Optional[GameState], name: str) -> Optional[dict]:
    """Build the sync payload for one connection. None if the session is gone."""
    if lobby is None or state is None:
        return None
    return {
        "game_state": {
            "phase": state.phase.value,
            "round_number": state.round_number,
            "total_rounds": state.total_rounds,
            "current_prompt": state.current_prompt,
            "time_remaining": state.time_remaining,
            "scores": dict(state.scores),
            "selected_player": state.selected_player,
        },
        "lobby": lobby.to_dict(),
        "user_vote": prior_input(state, name),
    }
