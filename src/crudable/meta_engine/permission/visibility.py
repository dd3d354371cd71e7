"""
Row-level visibility.

A row's ``granted`` column holds its visibility state:

- ``draft``: only the owner (``ownerId``) sees it;
- ``shared``: anyone holding table-level ``read`` sees it;
- ``published @<role>``: anyone whose effective roles contain ``<role>``,
  without a table-level check;
- empty or NULL: everyone sees it.

The same rules are available as a parameterized SQL predicate (for listing
queries) and as an in-memory check (for rows already fetched).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple

from crudable.meta_engine.permission.roles import Actor

if TYPE_CHECKING:
    from crudable.meta_engine.services.meta_permission_service import (
        MetaPermissionService,
    )

logger = logging.getLogger(__name__)

PUBLISHED_PREFIX = "published @"


class GrantedState(str, Enum):
    draft = "draft"
    shared = "shared"

    @staticmethod
    def published(role: str) -> str:
        return f"{PUBLISHED_PREFIX}{role}"


def published_role(granted: Optional[str]) -> Optional[str]:
    """``"published @member"`` -> ``"member"``; None for other states."""
    if granted and granted.startswith(PUBLISHED_PREFIX):
        return granted[len(PUBLISHED_PREFIX):].strip() or None
    return None


def ansi_quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class RowVisibility:
    """
    Build and evaluate the row visibility rule for an actor.

    ``quote`` renders identifiers for the target dialect; identifiers handed
    to ``build`` must come from the table catalog.
    """

    PARAM_PREFIX = "vis_"

    def __init__(
        self,
        permissions: "MetaPermissionService",
        quote: Callable[[str], str] = ansi_quote,
    ):
        self.permissions = permissions
        self.quote = quote

    def build(
        self,
        actor: Optional[Actor],
        table: str,
        base_condition: Optional[str] = None,
        *,
        table_alias: Optional[str] = None,
    ) -> Tuple[str, Dict[str, Any]]:
        """
        Return ``(sql_fragment, params)``.

        ``table_alias`` qualifies the ``granted``/``ownerId`` columns, which is
        required once the query joins other tables carrying the same columns.
        """
        prefix = f"{self.quote(table_alias)}." if table_alias else ""
        granted = f"{prefix}{self.quote('granted')}"
        owner = f"{prefix}{self.quote('ownerId')}"
        p = self.PARAM_PREFIX

        params: Dict[str, Any] = {}
        clauses = []
        if actor is not None and actor.is_authenticated:
            clauses.append(f"({granted} = :{p}draft AND {owner} = :{p}owner)")
            params[f"{p}draft"] = GrantedState.draft.value
            params[f"{p}owner"] = actor.id

        clauses.append(f"{granted} = :{p}shared")
        params[f"{p}shared"] = GrantedState.shared.value

        for i, role in enumerate(sorted(self.permissions.effective_roles(actor))):
            clauses.append(f"{granted} = :{p}pub_{i}")
            params[f"{p}pub_{i}"] = GrantedState.published(role)

        clauses.append(f"{granted} IS NULL")
        clauses.append(f"{granted} = :{p}empty")
        params[f"{p}empty"] = ""

        visibility = "(" + " OR ".join(clauses) + ")"
        if base_condition:
            sql = f"({base_condition}) AND {visibility}"
        else:
            sql = visibility
        logger.debug("Visibility predicate for %s: %s", table, sql)
        return sql, params

    def can_access_row(
        self, actor: Optional[Actor], table: str, row: Optional[Mapping[str, Any]]
    ) -> bool:
        if row is None:
            return False
        granted = row.get("granted")
        if not granted:
            return True

        if granted == GrantedState.draft.value:
            if actor is None or not actor.is_authenticated:
                return False
            owner_id = row.get("ownerId")
            return owner_id is not None and str(owner_id) == str(actor.id)

        if granted == GrantedState.shared.value:
            return self.permissions.can_perform(actor, table, "read")

        role = published_role(granted)
        if role is not None:
            return role in self.permissions.effective_roles(actor)

        # Unrecognized states match no clause of the SQL predicate either
        return False
