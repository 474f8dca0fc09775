from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    PRODUCT_MANAGER = "product_manager"
    DEVELOPER = "developer"
    CUSTOMER_SUPPORT = "customer_support"
    CUSTOMER = "customer"


class ContextSource(str, Enum):
    """Where the organization id of a request came from."""
    EXPLICIT = "explicit"
    QUERY = "query"
    HEADER = "header"
    COOKIE = "cookie"


class ErrorDetail(BaseModel):
    code: str
    message: str
    status: int
    details: Optional[list[Any]] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class MessageResponse(BaseModel):
    message: str
