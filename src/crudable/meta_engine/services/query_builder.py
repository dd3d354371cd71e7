"""
Listing query construction.

This is the only place that assembles SQL text for listings. Identifiers are
accepted only after the catalog confirms them (``column_identifier``,
``require_table``) and are then quoted by the store's dialect; every literal
becomes a bound parameter.

Sort, search and filter terms may point at a related table using
``RelatedTable.field``; the first N:1 field linking the listed table to
``RelatedTable`` becomes a ``LEFT JOIN`` aliased ``rel_<RelatedTable>``,
emitted once however many terms use it.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from crudable.exceptions import ForbiddenError, ValidationError
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.permission.visibility import RowVisibility
from crudable.meta_engine.schemas.definitions import FieldKind
from crudable.meta_engine.schemas.requests import FetchOptions, SearchCondition, SearchGroup
from crudable.meta_engine.services.catalog import TableCatalog
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService

logger = logging.getLogger(__name__)

# Identifiers outside quotes, not qualified and not called as functions
_BARE_IDENTIFIER = re.compile(r"(?<![.\w\"'])([A-Za-z_][A-Za-z0-9_]*)\b(?![.\"'(])")

RESERVED_PARAM_PREFIXES = ("vis_", "q_", "lim", "off")

_ACCENTS = (
    ("é", "e"), ("è", "e"), ("ê", "e"), ("ë", "e"),
    ("à", "a"), ("â", "a"), ("ä", "a"),
    ("î", "i"), ("ï", "i"),
    ("ô", "o"), ("ö", "o"),
    ("ù", "u"), ("û", "u"), ("ü", "u"),
    ("ç", "c"),
)

VALUELESS_OPERATORS = frozenset(
    {"is_empty", "is_not_empty", "is_zero", "is_not_zero", "is_true", "is_false"}
)
OPERATORS = frozenset(
    {
        "contains",
        "not_contains",
        "equals",
        "not_equals",
        "starts_with",
        "ends_with",
        "greater_than",
        "less_than",
        "between",
        "before",
        "after",
    }
) | VALUELESS_OPERATORS


def remove_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")


def escape_like(value: str) -> str:
    return value.replace("!", "!!").replace("%", "!%").replace("_", "!_")


def _check_where(where: str) -> None:
    """
    Reject a ``where`` fragment that could escape its parentheses.

    ``where`` is for calling code only and must never carry user input.
    """
    if ";" in where:
        raise ValidationError("Statement separator in where clause", field="where")
    depth = 0
    for ch in where:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                break
    if depth != 0:
        raise ValidationError("Unbalanced parentheses in where clause", field="where")


@dataclass
class ListQuery:
    sql: str
    count_sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    count_params: Dict[str, Any] = field(default_factory=dict)
    joins: List[str] = field(default_factory=list)


class _Params:
    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}
        self._counter = 0

    def add(self, value: Any) -> str:
        name = f"q_{self._counter}"
        self._counter += 1
        self.values[name] = value
        return f":{name}"


class _Joins:
    """LEFT JOINs collected while resolving terms, one per related table."""

    def __init__(self) -> None:
        self.by_table: Dict[str, str] = {}
        self.clauses: List[str] = []

    def add(self, related: str, clause_factory: Callable[[str], str]) -> str:
        alias = self.by_table.get(related)
        if alias is None:
            alias = f"rel_{related}"
            self.by_table[related] = alias
            self.clauses.append(clause_factory(alias))
        return alias


class QueryBuilder:
    def __init__(
        self,
        catalog: TableCatalog,
        permissions: MetaPermissionService,
        visibility: RowVisibility,
        quote: Callable[[str], str],
    ):
        self.catalog = catalog
        self.permissions = permissions
        self.visibility = visibility
        self.quote = quote

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def select_clause(self, table: str, alias: Optional[str] = None) -> str:
        """``"T".*`` followed by the SQL-computed columns of the table."""
        q = self.quote
        owner = q(alias or table)
        parts = [f"{owner}.*"]
        for name, field_def in self.catalog.fields_of(table).items():
            if field_def.expression:
                expression = self.qualify_expression(table, field_def.expression, alias)
                parts.append(f"({expression}) AS {q(name)}")
        return ", ".join(parts)

    def qualify_expression(self, table: str, expression: str, alias: Optional[str] = None) -> str:
        """Prefix bare column names of ``table`` so JOINs cannot make them ambiguous."""
        columns = set(self.catalog.physical_fields(table))
        owner = self.quote(alias or table)

        def replace(match: "re.Match[str]") -> str:
            name = match.group(1)
            if name in columns:
                return f"{owner}.{self.quote(name)}"
            return name

        return _BARE_IDENTIFIER.sub(replace, expression)

    def select_by(
        self, table: str, column: str, value: Any, *, order: Optional[str] = None
    ) -> Tuple[str, Dict[str, Any]]:
        """Single-column equality lookup used for fetch-by-id and relations."""
        q = self.quote
        column = self.catalog.column_identifier(table, column)
        sql = (
            f"SELECT {self.select_clause(table)} FROM {q(table)} "
            f"WHERE {q(table)}.{q(column)} = :value"
        )
        if order:
            sql += f" ORDER BY {order}"
        return sql, {"value": value}

    def order_clause(self, table: str, specs) -> str:
        q = self.quote
        parts = []
        for spec in specs:
            column = self.catalog.column_identifier(table, spec.field)
            parts.append(f"{q(table)}.{q(column)} {self._direction(spec.order)}")
        return ", ".join(parts)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def build_list(
        self,
        actor: Optional[Actor],
        table: str,
        options: FetchOptions,
        *,
        limit: Optional[int] = None,
        search_min_length: int = 2,
    ) -> ListQuery:
        q = self.quote
        table = self.catalog.require_table(table)
        params = _Params()
        joins = _Joins()
        conditions: List[str] = []

        if options.where:
            _check_where(options.where)
            for key in options.where_params:
                if key.startswith(RESERVED_PARAM_PREFIXES):
                    raise ValidationError(f"Reserved parameter name: {key}", field="where")
            conditions.append(f"({options.where})")
            params.values.update(options.where_params)

        for term, value in options.filters.items():
            column = self._term(actor, table, term, joins)
            if value is None:
                conditions.append(f"{column} IS NULL")
            else:
                conditions.append(f"{column} = {params.add(value)}")

        search = (options.search or "").strip()
        if len(search) >= search_min_length:
            search_sql = self._simple_search(actor, table, search, params)
            if search_sql:
                conditions.append(search_sql)

        groups = [self._group(actor, table, g, joins, params) for g in options.advanced_search]
        groups = [g for g in groups if g]
        if groups:
            conditions.append("(" + " OR ".join(groups) + ")")

        order_parts = []
        for criterion in options.sort:
            column = self._term(actor, table, criterion.field, joins)
            order_parts.append(f"{column} {self._direction(criterion.order)}")
        if options.order_by:
            column = self._term(actor, table, options.order_by, joins)
            order_parts.append(f"{column} {self._direction(options.order)}")
        if not order_parts:
            order_parts.append(f"{q(table)}.{q('id')} ASC")

        base = " AND ".join(conditions) if conditions else None
        where_sql, vis_params = self.visibility.build(actor, table, base, table_alias=table)
        params.values.update(vis_params)

        from_sql = f"FROM {q(table)}"
        if joins.clauses:
            from_sql += " " + " ".join(joins.clauses)

        sql = (
            f"SELECT {self.select_clause(table)} {from_sql} WHERE {where_sql} "
            f"ORDER BY {', '.join(order_parts)}"
        )
        count_sql = f"SELECT COUNT(*) AS total {from_sql} WHERE {where_sql}"
        count_params = dict(params.values)

        if limit is not None:
            sql += " LIMIT :lim OFFSET :off"
            params.values["lim"] = limit
            params.values["off"] = options.offset

        logger.debug("List query for %s: %s", table, sql)
        return ListQuery(
            sql=sql,
            count_sql=count_sql,
            params=params.values,
            count_params=count_params,
            joins=list(joins.clauses),
        )

    # ------------------------------------------------------------------
    # Terms
    # ------------------------------------------------------------------

    def _term(self, actor: Optional[Actor], table: str, term: str, joins: _Joins) -> str:
        """Quote a column term, registering the JOIN a related term needs."""
        q = self.quote
        parts = [p.strip() for p in str(term).split(".")]
        if len(parts) == 3 and self.catalog.resolve_table_name(parts[0]) == table:
            parts = parts[1:]
        if len(parts) == 2 and self.catalog.resolve_table_name(parts[0]) == table:
            parts = parts[1:]

        if len(parts) == 1:
            return self._column_sql(actor, table, table, parts[0])

        if len(parts) != 2:
            raise ValidationError(f"Malformed field reference: {term!r}", field=str(term))

        related = self.catalog.resolve_table_name(parts[0])
        if related is None:
            raise ValidationError(f"Unknown related table in {term!r}", field=str(term))
        fk_field = self.catalog.find_foreign_key_field(table, related)
        if fk_field is None:
            raise ValidationError(
                f"{table} has no relation to {related}", field=str(term)
            )
        if not self.permissions.can_perform(actor, related, "read"):
            raise ForbiddenError("read", related)

        foreign_key = self.catalog.field(table, fk_field).foreign_key

        def join_clause(alias: str) -> str:
            return (
                f"LEFT JOIN {q(related)} AS {q(alias)} "
                f"ON {q(table)}.{q(fk_field)} = {q(alias)}.{q(foreign_key)}"
            )

        alias = joins.add(related, join_clause)
        return self._column_sql(actor, related, alias, parts[1])

    def _column_sql(self, actor: Optional[Actor], table: str, owner: str, column: str) -> str:
        column = self.catalog.column_identifier(table, column)
        if not self.permissions.field_readable(actor, table, column):
            raise ForbiddenError("read", f"{table}.{column}")
        field_def = self.catalog.field(table, column)
        if field_def is not None and field_def.kind is FieldKind.COMPUTED:
            if not field_def.expression:
                raise ValidationError(f"{table}.{column} has no column", field=column)
            return f"({self.qualify_expression(table, field_def.expression, owner)})"
        return f"{self.quote(owner)}.{self.quote(column)}"

    @staticmethod
    def _direction(order: Optional[str]) -> str:
        direction = (order or "ASC").strip().upper()
        if direction not in {"ASC", "DESC"}:
            raise ValidationError(f"Invalid sort order: {order!r}", field="order")
        return direction

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def fold(self, column_sql: str) -> str:
        """Lower-case, accent-stripped rendering of a text column."""
        folded = f"LOWER({column_sql})"
        for accented, plain in _ACCENTS:
            folded = f"REPLACE({folded}, '{accented}', '{plain}')"
        return folded

    def _simple_search(
        self, actor: Optional[Actor], table: str, term: str, params: _Params
    ) -> Optional[str]:
        q = self.quote
        columns = [
            name
            for name in self.catalog.text_fields(table)
            if self.permissions.field_readable(actor, table, name)
        ]
        if not columns:
            # Nothing the actor may read can match
            return "1 = 0"
        placeholder = params.add(f"%{escape_like(remove_accents(term).lower())}%")
        ors = [
            f"{self.fold(f'{q(table)}.{q(c)}')} LIKE {placeholder} ESCAPE '!'" for c in columns
        ]
        return "(" + " OR ".join(ors) + ")"

    def _group(
        self,
        actor: Optional[Actor],
        table: str,
        group: SearchGroup,
        joins: _Joins,
        params: _Params,
    ) -> Optional[str]:
        conditions = [
            self._condition(actor, table, c, joins, params) for c in group.conditions
        ]
        if not conditions:
            return None
        return "(" + " AND ".join(conditions) + ")"

    def _condition(
        self,
        actor: Optional[Actor],
        table: str,
        condition: SearchCondition,
        joins: _Joins,
        params: _Params,
    ) -> str:
        op = (condition.operator or "").strip().lower()
        if op not in OPERATORS:
            raise ValidationError(f"Unknown search operator: {condition.operator!r}", field="operator")

        col = self._term(actor, table, condition.field, joins)
        value = condition.value
        if op not in VALUELESS_OPERATORS and (value is None or value == ""):
            raise ValidationError(f"Operator {op} needs a value", field=condition.field)

        def like(pattern: str) -> str:
            return params.add(pattern)

        if op in {"contains", "not_contains", "starts_with", "ends_with"}:
            needle = escape_like(remove_accents(str(value)).lower())
            pattern = {
                "contains": f"%{needle}%",
                "not_contains": f"%{needle}%",
                "starts_with": f"{needle}%",
                "ends_with": f"%{needle}",
            }[op]
            placeholder = like(pattern)
            if op == "not_contains":
                return f"({col} IS NULL OR {self.fold(col)} NOT LIKE {placeholder} ESCAPE '!')"
            return f"{self.fold(col)} LIKE {placeholder} ESCAPE '!'"
        if op == "equals":
            return f"{col} = {params.add(value)}"
        if op == "not_equals":
            return f"({col} IS NULL OR {col} <> {params.add(value)})"
        if op in {"greater_than", "after"}:
            return f"{col} > {params.add(value)}"
        if op in {"less_than", "before"}:
            return f"{col} < {params.add(value)}"
        if op == "between":
            if condition.value2 is None or condition.value2 == "":
                raise ValidationError("Operator between needs two values", field=condition.field)
            return f"{col} BETWEEN {params.add(value)} AND {params.add(condition.value2)}"
        if op == "is_empty":
            return f"({col} IS NULL OR {col} = '')"
        if op == "is_not_empty":
            return f"({col} IS NOT NULL AND {col} <> '')"
        if op == "is_zero":
            return f"{col} = 0"
        if op == "is_not_zero":
            return f"({col} IS NOT NULL AND {col} <> 0)"
        if op == "is_true":
            return f"{col} = 1"
        # is_false
        return f"({col} IS NULL OR {col} = 0)"
