"""Identity collaborator used to look up users and their roles."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol

from .contracts import User


class IdentityResolver(Protocol):
    """Protocol for user directories consulted by the engine."""

    async def get_user(self, user_id: str) -> Optional[User]:
        """Return the user with ``user_id`` or ``None``."""

    async def list_users(self, org_id: str) -> List[User]:
        """Return every user belonging to ``org_id``."""


class InMemoryDirectory(IdentityResolver):
    """Keep users in local memory.

    Useful for tests and simulations.
    """

    def __init__(self, users: Iterable[User] = ()) -> None:
        self._users: Dict[str, User] = {}
        for user in users:
            self.add_user(user)

    def add_user(self, user: User) -> None:
        self._users[user.id] = user

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def list_users(self, org_id: str) -> List[User]:
        return [u for u in self._users.values() if u.org_id == org_id]
