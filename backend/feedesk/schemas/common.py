# ============================================================
# feedesk/schemas/common.py
#
# The response envelope every endpoint shares.
#
#   success → {"success": true,  "message": "OK", "data": {...}, "warnings": []}
#   failure → {"success": false, "message": "...", "detail": [...]}
#
# Warnings carry best-effort failures (receipt not delivered,
# ledger not refreshed) that did not undo the operation.
# ============================================================

from pydantic import BaseModel, Field
from typing import Any, Optional, Generic, TypeVar, List

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str = "OK"
    data: Optional[T] = None
    warnings: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Returned when something goes wrong."""
    success: bool = False
    message: str
    kind: Optional[str] = None
    detail: Optional[List[Any]] = None
    data: Optional[Any] = None
