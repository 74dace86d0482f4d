# apps/api/src/shared/responses.py
from typing import Any, Literal, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.shared.exceptions import BaseHTTPException


class ApiResponse(BaseModel):
    """Envelope returned by every endpoint."""

    status: Literal["success", "error"] = Field(..., description="Outcome")
    message: str = Field(..., description="Human readable summary")
    data: Optional[Any] = Field(None, description="Payload or structured error detail")


class PaginationMetadata(BaseModel):
    """Pagination metadata for list responses"""

    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMetadata":
        pages = (total + limit - 1) // limit if total > 0 else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
        )


def success_response(
    message: str, data: Any = None, status_code: int = status.HTTP_200_OK
) -> JSONResponse:
    body = ApiResponse(status="success", message=message, data=jsonable_encoder(data))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def error_response(
    message: str, status_code: int, data: Any = None
) -> JSONResponse:
    body = ApiResponse(status="error", message=message, data=jsonable_encoder(data))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def exception_response(exc: BaseHTTPException) -> JSONResponse:
    data = {"errorCode": exc.error_code, "errorKind": exc.kind.value}
    if exc.data:
        data.update(exc.data)
    return error_response(exc.message, exc.status_code, data)
