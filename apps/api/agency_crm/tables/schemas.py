from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agency_crm.tables.query import FilterSpec, SortSpec


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SavedViewBase(_CamelModel):
    name: str = Field(min_length=1, max_length=128)
    columns: list[str] = Field(default_factory=list)
    sorts: list[SortSpec] = Field(default_factory=list)
    filters: list[FilterSpec] = Field(default_factory=list)
    page_size: int = Field(default=25, ge=1, le=1000)
    search: str | None = None
    is_default: bool = False


class SavedViewCreate(SavedViewBase):
    endpoint: str = Field(min_length=1)


class SavedViewUpdate(_CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    columns: list[str] | None = None
    sorts: list[SortSpec] | None = None
    filters: list[FilterSpec] | None = None
    page_size: int | None = Field(default=None, ge=1, le=1000)
    search: str | None = None
    is_default: bool | None = None


class SavedViewRead(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: UUID
    endpoint: str
    name: str
    columns: list[str]
    sorts: list[dict[str, Any]]
    filters: list[dict[str, Any]]
    page_size: int
    search: str | None = None
    is_default: bool
    created_at: datetime
    updated_at: datetime


class TablePagination(_CamelModel):
    total: int
    total_pages: int
    page: int
    page_size: int


class TablePage(BaseModel):
    data: list[dict[str, Any]]
    pagination: TablePagination
