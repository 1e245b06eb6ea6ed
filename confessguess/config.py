"""Runtime settings, read from the environment."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class PhaseDurations:
    """Phase lengths in seconds."""

    game_start: int = 2
    voting: int = 30
    min_response: int = 15  # floor before an early advance
    initial_results: int = 4
    player_selection: int = 3
    confession: int = 60
    guessing: int = 30
    confession_results: int = 5
    scoreboard: int = 5
    between_rounds: int = 3


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8765
    topics_file: Path = Path("never_have_i_ever_topics.txt")
    total_rounds: int = 15
    min_players: int = 2
    grace_seconds: float = 300
    sweep_interval: float = 60
    time_scale: float = 1.0
    log_level: str = "INFO"
    durations: PhaseDurations = field(default_factory=PhaseDurations)

    def delay(self, seconds: float) -> float:
        """Wall-clock delay for a game-time duration."""
        return seconds * self.time_scale

    @classmethod
    def from_env(cls, env=None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            host=env.get("CONFESS_HOST", "0.0.0.0"),
            port=int(env.get("CONFESS_PORT", 8765)),
            topics_file=Path(env.get("CONFESS_TOPICS", "never_have_i_ever_topics.txt")),
            total_rounds=int(env.get("CONFESS_TOTAL_ROUNDS", 15)),
            grace_seconds=float(env.get("CONFESS_GRACE_SECONDS", 300)),
            sweep_interval=float(env.get("CONFESS_SWEEP_SECONDS", 60)),
            time_scale=float(env.get("CONFESS_TIME_SCALE", 1.0)),
            log_level=env.get("CONFESS_LOG_LEVEL", "INFO").upper(),
        )
