from crudable.meta_engine.permission.roles import (
    PUBLIC_ROLE,
    Actor,
    ActorRoleResolver,
    RoleGraph,
    parse_roles,
)
from crudable.meta_engine.permission.visibility import GrantedState, RowVisibility

__all__ = [
    "PUBLIC_ROLE",
    "Actor",
    "ActorRoleResolver",
    "GrantedState",
    "RoleGraph",
    "RowVisibility",
    "parse_roles",
]
