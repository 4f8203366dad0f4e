"""Response models shared by several v1 routers."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class ORMModel(BaseModel):
    """Base for responses built from ORM rows."""
    model_config = ConfigDict(from_attributes=True)


class Page(BaseModel, Generic[T]):
    """Paginated list response."""
    data: list[T]
    total: int
    page: int
    limit: int
    total_pages: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def to_page(result: dict[str, Any], model: type[BaseModel]) -> dict[str, Any]:
    """Validate the rows of a paginated service result against a response model."""
    return {**result, "data": [model.model_validate(row) for row in result["data"]]}
