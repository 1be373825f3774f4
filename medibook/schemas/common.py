from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")

class CamelModel(BaseModel):
    """Accepts and emits camelCase keys; reads ORM objects directly."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

class Pagination(CamelModel):
    current: int
    total: int
    total_records: int

    @classmethod
    def build(cls, page: int, limit: int, total_records: int) -> "Pagination":
        pages = (total_records + limit - 1) // limit if limit else 0
        return cls(current=page, total=pages, total_records=total_records)

class APIResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str = ""
    data: Optional[T] = None

class PaginatedResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str = ""
    data: List[T] = []
    pagination: Pagination

class MessageResponse(BaseModel):
    success: bool = True
    message: str
