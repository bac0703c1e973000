"""Common/shared schemas for request bodies and the error envelope."""
from pydantic import BaseModel
from typing import Any, Optional


class ErrorDetail(BaseModel):
    code: str
    message: str
    timestamp: str
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


class IPRequest(BaseModel):
    ip_address: str
