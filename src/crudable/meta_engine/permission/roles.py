"""
Role inheritance.

Roles form a directed graph (role -> parent roles). An actor's effective roles
are the union of the closures of every role it holds, plus ``public``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Union

from crudable.meta_engine.schemas.definitions import RoleDef

PUBLIC_ROLE = "public"

RoleInput = Union[str, Sequence[str], None]


def parse_roles(raw: RoleInput) -> List[str]:
    """
    Normalize a raw role field.

    Accepts ``"@member @admin"``, ``"member admin"``, ``["@member", "admin"]``.
    """
    if not raw:
        return []
    tokens: Iterable[str] = raw.split() if isinstance(raw, str) else raw
    roles: List[str] = []
    for token in tokens:
        if not isinstance(token, str):
            continue
        name = token.strip().lstrip("@").strip()
        if name and name not in roles:
            roles.append(name)
    return roles


@dataclass(frozen=True)
class Actor:
    """The user (or anonymous visitor) a decision is made for."""

    id: Optional[Union[int, str]] = None
    roles: RoleInput = None

    @classmethod
    def anonymous(cls) -> "Actor":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.id is not None


class RoleGraph:
    def __init__(self, roles: Dict[str, RoleDef]):
        self._parents: Dict[str, tuple] = {
            name: tuple(role.inherits) for name, role in roles.items()
        }

    def __contains__(self, role: str) -> bool:
        return role in self._parents

    def role_names(self) -> List[str]:
        return list(self._parents.keys())

    def closure(self, roles: Union[str, Iterable[str]]) -> FrozenSet[str]:
        """
        Every role reachable from ``roles`` by following parent edges.

        Cycles are absorbed by the visited set. Undeclared roles contribute
        nothing but ``public`` is always present.
        """
        start = [roles] if isinstance(roles, str) else list(roles)
        visited: Set[str] = set()
        stack = [r for r in start if r in self._parents]
        while stack:
            role = stack.pop()
            if role in visited:
                continue
            visited.add(role)
            for parent in self._parents.get(role, ()):
                if parent not in visited and parent in self._parents:
                    stack.append(parent)
        visited.add(PUBLIC_ROLE)
        return frozenset(visited)


class ActorRoleResolver:
    def __init__(self, graph: RoleGraph):
        self.graph = graph

    def effective_roles(self, actor: Optional[Actor]) -> FrozenSet[str]:
        if actor is None or not actor.is_authenticated:
            return frozenset({PUBLIC_ROLE})
        return self.graph.closure(parse_roles(actor.roles))
