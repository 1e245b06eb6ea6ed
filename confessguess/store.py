"""Session-keyed registries for lobbies and game states."""

import random
import string
from typing import Generic, Iterator, Optional, TypeVar

from .models import GameState, Lobby

T = TypeVar("T")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


class SessionStore(Generic[T]):
    """Mapping of session code to a single record."""

    def __init__(self):
        self._items: dict[str, T] = {}

    def get(self, code: str) -> Optional[T]:
        return self._items.get(code)

    def put(self, code: str, item: T) -> T:
        self._items[code] = item
        return item

    def pop(self, code: str) -> Optional[T]:
        return self._items.pop(code, None)

    def __contains__(self, code: str) -> bool:
        return code in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items))


class LobbyRegistry(SessionStore[Lobby]):
    def __init__(self, rng=None):
        super().__init__()
        self.rng = rng or random.Random()

    def _generate_code(self) -> str:
        while True:
            code = "".join(self.rng.choices(CODE_ALPHABET, k=CODE_LENGTH))
            if code not in self:
                return code

    def create(self, host_name: str) -> Lobby:
        lobby = Lobby(code=self._generate_code(), host=host_name)
        lobby.add(host_name)
        return self.put(lobby.code, lobby)


class GameRegistry(SessionStore[GameState]):
    pass
