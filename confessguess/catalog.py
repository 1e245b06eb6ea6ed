"""Prompt catalog: the ordered "never have I ever" statements."""

import logging
import random
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


DEFAULT_PROMPTS = (
    "eaten a bug on purpose",
    "gone skinny dipping",
    "lied about my age",
    "pretended to be sick to skip work/school",
    "stalked someone on social media for hours",
    "cried during a movie",
    "had a crush on a teacher",
    "stolen something from a store",
    "been in a fight",
    "kissed someone on the first date",
    "gotten a tattoo I regret",
    "fallen asleep during a movie in theaters",
    "texted the wrong person by mistake",
    "pretended to know a song I didn't know",
    "laughed so hard I peed myself",
    "been caught talking to myself",
    "eaten food off the floor",
    "googled myself",
    "had an imaginary friend as a child",
    "been kicked out of a public place",
)


class Catalog:
    """Immutable ordered prompts. Usage is tracked by index, so duplicate texts stay distinct."""

    def __init__(self, prompts: Iterable[str]):
        self._prompts = tuple(prompts)

    def __len__(self) -> int:
        return len(self._prompts)

    def __getitem__(self, idx: int) -> str:
        return self._prompts[idx]

    def unused(self, used: set[int]) -> list[int]:
        return [i for i in range(len(self._prompts)) if i not in used]

    def is_exhausted(self, used: set[int]) -> bool:
        return len(used) >= len(self._prompts)

    def pick_unused(self, used: set[int], rng=None) -> Optional[int]:
        """Uniformly pick the index of a prompt not in used; None when all are used."""
        choices = self.unused(used)
        if not choices:
            return None
        return (rng or random).choice(choices)

    @classmethod
    def from_file(cls, path: Path) -> "Catalog":
        try:
            lines = Path(path).read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.error("Could not read prompts from %s (%s); using built-in prompts", path, e)
            return cls(DEFAULT_PROMPTS)
        prompts = [line.strip() for line in lines if line.strip()]
        if not prompts:
            logger.warning("No prompts in %s; using built-in prompts", path)
            return cls(DEFAULT_PROMPTS)
        logger.info("Loaded %d prompts from %s", len(prompts), path)
        return cls(prompts)
