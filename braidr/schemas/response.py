from pydantic import BaseModel, model_validator
from typing import Optional, Generic, TypeVar, Any

T = TypeVar("T")

DEFAULT_ERROR_MESSAGE = "An error occurred"

class Pagination(BaseModel):
    page: int = 1
    limit: int = 20
    total: Optional[int] = None
    totalPages: Optional[int] = None
    hasMore: Optional[bool] = None

class ApiResponse(BaseModel, Generic[T]):
    """
    Uniform result envelope returned by every data-access call.

    A failed envelope always carries a human-readable ``error``.
    """
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    message: Optional[str] = None
    pagination: Optional[Pagination] = None

    @model_validator(mode="after")
    def ensure_error_message(self):
        if not self.success and not self.error:
            self.error = DEFAULT_ERROR_MESSAGE
        return self

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None, pagination: Optional[Pagination] = None):
        return cls(success=True, data=data, message=message, pagination=pagination)

    @classmethod
    def fail(cls, error: Optional[str] = None, message: Optional[str] = None):
        return cls(success=False, error=error, message=message)
