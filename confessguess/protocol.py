"""WebSocket message definitions and serialization."""

import json
from enum import Enum


class Inbound(str, Enum):
    JoinLobby = "join-lobby"
    LeaveLobby = "leave-lobby"
    StartGame = "start-game"
    CastInitialVote = "cast-initial-vote"
    MakeConfession = "make-confession"
    MakeGuess = "make-guess"
    RequestSync = "request-sync"
    RestartGame = "restart-game"


class Outbound(str, Enum):
    LobbyUpdated = "lobby-updated"
    LobbyClosed = "lobby-closed"
    GameStarted = "game-started"
    TopicSelected = "topic-selected"
    GamePhaseUpdate = "game-phase-update"
    InitialVoteResults = "initial-vote-results"
    PlayerSelected = "player-selected"
    ConfessionResults = "confession-results"
    ScoreboardUpdate = "scoreboard-update"
    GameEnded = "game-ended"
    GameTimer = "game-timer"
    SyncGameState = "sync-game-state"


def create_message(event: Outbound, payload: dict = None) -> dict:
    """Flat message: {"type": event, **payload}."""
    return {"type": event.value, **(payload or {})}


def parse_message(data: str) -> tuple[Inbound, dict]:
    """Parse a client frame. Raises ValueError on bad JSON or an unknown type."""
    msg = json.loads(data)
    if not isinstance(msg, dict):
        raise ValueError("Message must be an object")
    return Inbound(msg.get("type")), msg


def parse_bool(value):
    """Accept true/false as JSON booleans or as the strings "true"/"false"."""
    if isinstance(value, bool):
        return value
    if value in ("true", "false"):
        return value == "true"
    return None
