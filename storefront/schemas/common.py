from pydantic import BaseModel
from typing import Generic, List, Optional, TypeVar

from ..enums import ErrorCode


T = TypeVar("T")


class ServiceResult(BaseModel, Generic[T]):
    """
    Outcome of a service operation.

    Expected domain failures (unknown product, expired code, inactive city...)
    are returned as a failed result carrying an ``ErrorCode`` and a message the
    shopper can read. Only real faults are raised.
    """
    succeeded: bool
    data: Optional[T] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    @classmethod
    def success(cls, data: Optional[T] = None) -> "ServiceResult[T]":
        return cls(succeeded=True, data=data)

    @classmethod
    def failure(cls, error_code: ErrorCode, error_message: str) -> "ServiceResult[T]":
        return cls(succeeded=False, error_code=error_code, error_message=error_message)

    class Config:
        arbitrary_types_allowed = True


class Page(BaseModel, Generic[T]):
    """Schema for a page of results"""
    items: List[T] = []
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0
