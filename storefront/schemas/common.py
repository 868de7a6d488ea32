# storefront/schemas/common.py
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """
    Success envelope: {"success": true, "data": ...}
    """

    success: bool = True
    data: T


class ErrorBody(BaseModel):
    message: str
    code: str
    details: Any | None = None


class ErrorResponse(BaseModel):
    """
    Failure envelope: {"success": false, "error": {"message", "code"}}
    """

    success: bool = False
    error: ErrorBody


class MessageRead(BaseModel):
    message: str
