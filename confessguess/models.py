"""Game model definitions for Confess & Guess."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


TOTAL_ROUNDS = 15


class Phase(str, Enum):
    Waiting = "waiting"
    InitialVoting = "initial-voting"
    InitialResults = "initial-results"
    PlayerSelection = "player-selection"
    Confession = "confession"
    Guessing = "guessing"
    ConfessionResults = "confession-results"
    Scoreboard = "scoreboard"
    Ended = "ended"


class Vote(str, Enum):
    Yes = "yes"
    No = "no"


@dataclass
class Participant:
    """A named member of a lobby."""

    name: str
    is_host: bool = False
    connected: bool = True

    def to_dict(self) -> dict:
        return {"username": self.name, "is_host": self.is_host, "connected": self.connected}


@dataclass
class Lobby:
    """Participants gathered under one session code."""

    code: str
    host: str
    participants: list[Participant] = field(default_factory=list)
    started: bool = False
    created_at: float = field(default_factory=time.time)

    def find(self, name: str) -> Optional[Participant]:
        return next((p for p in self.participants if p.name == name), None)

    def connected(self) -> list[Participant]:
        return [p for p in self.participants if p.connected]

    def names(self) -> list[str]:
        return [p.name for p in self.participants]

    def add(self, name: str) -> Participant:
        p = Participant(name=name, is_host=not self.participants)
        if p.is_host:
            self.host = name
        self.participants.append(p)
        return p

    def remove(self, name: str) -> Optional[Participant]:
        """Drop a participant; if they hosted, hand the role to the next in join order."""
        p = self.find(name)
        if p is None:
            return None
        self.participants.remove(p)
        if p.is_host and self.participants:
            successor = self.participants[0]
            successor.is_host = True
            self.host = successor.name
        return p

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "host": self.host,
            "participants": [p.to_dict() for p in self.participants],
            "started": self.started,
            "created_at": self.created_at,
        }


@dataclass
class GameState:
    """Per-session game progress. Votes and guesses are last-write-wins; the confession is first-write-wins."""

    phase: Phase = Phase.Waiting
    round_number: int = 1
    total_rounds: int = TOTAL_ROUNDS
    current_prompt: Optional[str] = None
    used_prompts: set[int] = field(default_factory=set)
    initial_votes: dict[str, Vote] = field(default_factory=dict)
    selected_player: Optional[str] = None
    selected_vote: Optional[Vote] = None
    confession: Optional[bool] = None
    guesses: dict[str, bool] = field(default_factory=dict)
    scores: dict[str, int] = field(default_factory=dict)
    time_remaining: int = 0
    timer_duration: int = 0
    active_timer: Any = None  # timers.ScheduledTask or timers.Countdown

    @property
    def elapsed(self) -> int:
        """Seconds elapsed on the running countdown."""
        return self.timer_duration - self.time_remaining

    @property
    def in_progress(self) -> bool:
        return self.phase != Phase.Ended

    def begin_round(self, prompt: str, prompt_idx: int):
        self.current_prompt = prompt
        self.used_prompts.add(prompt_idx)
        self.phase = Phase.InitialVoting
        self.initial_votes = {}
        self.selected_player = None
        self.selected_vote = None
        self.confession = None
        self.guesses = {}

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "round_number": self.round_number,
            "total_rounds": self.total_rounds,
            "current_prompt": self.current_prompt,
            "used_prompts": sorted(self.used_prompts),
            "selected_player": self.selected_player,
            "scores": dict(self.scores),
            "time_remaining": self.time_remaining,
        }

    @classmethod
    def for_roster(cls, names: list[str], total_rounds: int = TOTAL_ROUNDS) -> "GameState":
        return cls(total_rounds=total_rounds, scores={n: 0 for n in names})
