"""Game engine - rules and state transitions."""

import logging
import random
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

from .catalog import Catalog
from .models import GameState, Lobby, Phase, Vote


MAJORITY_POINTS = 1
CORRECT_GUESS_POINTS = 3


@dataclass
class VoteResult:
    tally: dict[str, int]
    majority: Optional[Vote]


@dataclass
class GuessResult:
    tally: dict[str, int]
    actual: bool
    confessor: Optional[str]


def tally_votes(lobby: Lobby, state: GameState) -> dict[str, int]:
    """Count yes/no among connected participants; non-voters are left out."""
    tally = {Vote.Yes.value: 0, Vote.No.value: 0}
    for p in lobby.connected():
        vote = state.initial_votes.get(p.name)
        if vote is not None:
            tally[vote.value] += 1
    return tally


def majority_vote(tally: dict[str, int]) -> Optional[Vote]:
    """Strict majority; a tie has none."""
    yes, no = tally[Vote.Yes.value], tally[Vote.No.value]
    if yes > no:
        return Vote.Yes
    if no > yes:
        return Vote.No
    return None


def eligible_guessers(lobby: Lobby, state: GameState) -> list[str]:
    return [p.name for p in lobby.connected() if p.name != state.selected_player]


def tally_guesses(lobby: Lobby, state: GameState) -> dict[str, int]:
    tally = {"honest": 0, "lied": 0}
    for name in eligible_guessers(lobby, state):
        guess = state.guesses.get(name)
        if guess is True:
            tally["honest"] += 1
        elif guess is False:
            tally["lied"] += 1
    return tally


def all_voted(lobby: Lobby, state: GameState) -> bool:
    return all(p.name in state.initial_votes for p in lobby.connected())


def all_guessed(lobby: Lobby, state: GameState) -> bool:
    return all(name in state.guesses for name in eligible_guessers(lobby, state))


class GameEngine:
    def __init__(self, rng=None, min_response: int = 15):
        self.rng = rng or random.Random()
        self.min_response = min_response

    def apply_vote(self, lobby: Lobby, state: GameState, name: str, vote) -> Optional[str]:
        """Record an initial vote. Returns error message or None on success."""
        if state.phase != Phase.InitialVoting:
            return "Not in voting phase"
        p = lobby.find(name)
        if p is None or not p.connected:
            return "Not a connected participant"
        try:
            vote = Vote(vote)
        except ValueError:
            return "Invalid vote"
        state.initial_votes[name] = vote
        return None

    def apply_confession(self, state: GameState, name: str, confession: bool) -> Optional[str]:
        """Record the confessor's answer; only the first one counts."""
        if state.phase != Phase.Confession:
            return "Not in confession phase"
        if name != state.selected_player:
            return "Only the selected player can confess"
        if not isinstance(confession, bool):
            return "Invalid confession"
        if state.confession is not None:
            return "Already confessed"
        state.confession = confession
        return None

    def apply_guess(self, lobby: Lobby, state: GameState, name: str, guess: bool) -> Optional[str]:
        if state.phase != Phase.Guessing:
            return "Not in guessing phase"
        if name == state.selected_player:
            return "The confessor cannot guess"
        if not isinstance(guess, bool):
            return "Invalid guess"
        p = lobby.find(name)
        if p is None or not p.connected:
            return "Not a connected participant"
        state.guesses[name] = guess
        return None

    def can_close_early(self, lobby: Lobby, state: GameState) -> bool:
        """Everyone eligible responded and the minimum phase time has passed."""
        if state.elapsed < self.min_response:
            return False
        if state.phase == Phase.InitialVoting:
            return all_voted(lobby, state)
        if state.phase == Phase.Guessing:
            return all_guessed(lobby, state)
        return False

    def resolve_votes(self, lobby: Lobby, state: GameState) -> VoteResult:
        """Tally the initial votes and award majority points."""
        tally = tally_votes(lobby, state)
        majority = majority_vote(tally)
        if majority is not None:
            for p in lobby.participants:
                if state.initial_votes.get(p.name) == majority:
                    state.scores[p.name] = state.scores.get(p.name, 0) + MAJORITY_POINTS
        state.phase = Phase.InitialResults
        logger.info("Votes resolved: tally=%s majority=%s", tally, majority.value if majority else None)
        return VoteResult(tally=tally, majority=majority)

    def select_confessor(self, lobby: Lobby, state: GameState) -> Optional[str]:
        """Pick a random connected participant who voted. None if nobody qualifies."""
        eligible = [p.name for p in lobby.connected() if p.name in state.initial_votes]
        if not eligible:
            return None
        name = self.rng.choice(eligible)
        state.selected_player = name
        state.selected_vote = state.initial_votes[name]
        state.phase = Phase.PlayerSelection
        return name

    def resolve_guesses(self, lobby: Lobby, state: GameState) -> GuessResult:
        """Score guesses against the confession; an unanswered confession counts as honest."""
        tally = tally_guesses(lobby, state)
        actual = state.confession if state.confession is not None else True
        for name in eligible_guessers(lobby, state):
            if state.guesses.get(name) == actual:
                state.scores[name] = state.scores.get(name, 0) + CORRECT_GUESS_POINTS
        state.phase = Phase.ConfessionResults
        return GuessResult(tally=tally, actual=actual, confessor=state.selected_player)

    def finish_round(self, state: GameState, catalog: Catalog) -> Phase:
        """Move past the scoreboard: Waiting for another round, or Ended."""
        state.round_number += 1
        if state.round_number > state.total_rounds or catalog.is_exhausted(state.used_prompts):
            state.phase = Phase.Ended
        else:
            state.phase = Phase.Waiting
        return state.phase
