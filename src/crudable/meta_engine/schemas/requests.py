from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class CrudAction(str, Enum):
    get = "get"
    add = "add"
    update = "update"
    delete = "delete"


class SortCriterion(BaseModel):
    field: str = Field(..., description="Column or 'RelatedTable.field'")
    order: str = Field(default="ASC", description="ASC or DESC")


class SearchCondition(BaseModel):
    field: str = Field(..., description="Column or 'RelatedTable.field'")
    operator: str = Field(default="contains", description="e.g. contains, equals, between")
    value: Any = None
    value2: Any = Field(default=None, description="Upper bound for 'between'")


class SearchGroup(BaseModel):
    """Conditions of a group are AND-ed; groups are OR-ed together."""

    conditions: List[SearchCondition] = Field(default_factory=list)


class FetchOptions(BaseModel):
    """Options shared by fetch_one and fetch_many."""

    # 分页
    limit: Optional[int] = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)

    # 排序
    order_by: Optional[str] = Field(default=None, description="Column or 'RelatedTable.field'")
    order: str = Field(default="ASC")
    sort: List[SortCriterion] = Field(default_factory=list)

    # 过滤
    where: Optional[str] = Field(
        default=None,
        description="SQL condition from calling code only, never from request input",
    )
    where_params: Dict[str, Any] = Field(default_factory=dict)
    filters: Dict[str, Any] = Field(
        default_factory=dict, description="Equality filters on declared columns"
    )
    search: Optional[str] = None
    advanced_search: List[SearchGroup] = Field(default_factory=list)

    # 关系
    relation: Optional[Union[str, List[str]]] = Field(
        default=None, description="'all', a comma separated list, a list, or None for default"
    )
    compact: bool = False
    expand_nested: bool = True

    # 输出
    field_selection: Optional[List[str]] = None
    include_schema: bool = False
    no_id: bool = False
    no_system_fields: bool = False


class Pagination(BaseModel):
    total: int = 0
    count: int = 0
    limit: Optional[int] = None
    offset: int = 0


class FetchResult(BaseModel):
    success: bool = True
    row: Optional[Dict[str, Any]] = None
    rows: Optional[List[Dict[str, Any]]] = None
    pagination: Optional[Pagination] = None
    schema_: Optional[Dict[str, Any]] = Field(default=None, alias="schema")

    model_config = {"populate_by_name": True}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CrudItem(BaseModel):
    """
    One request against a table.

    ``id`` selects a row for get/update/delete; without it ``get`` lists.
    """

    table: str = Field(..., description="Table name, matched case-insensitively")
    action: CrudAction = Field(default=CrudAction.get)
    id: Optional[Union[int, str]] = None
    data: Dict[str, Any] = Field(default_factory=dict, description="Field values to write")
    options: FetchOptions = Field(default_factory=FetchOptions)
