# feedesk/schemas/results.py
#
# Explicit result values for the ledger flow. The core returns
# Ok(...) or Err(...) instead of raising or calling back, so every
# caller handles both branches in plain code.

from pydantic import BaseModel, Field
from typing import Generic, List, Optional, TypeVar, Union
from enum import Enum

T = TypeVar("T")


class ErrorKind(str, Enum):
    validation           = "validation"
    in_flight            = "in_flight"
    stale_snapshot       = "stale_snapshot"
    payment_failed       = "payment_failed"
    snapshot_unavailable = "snapshot_unavailable"


class FieldError(BaseModel):
    field: str                          # e.g. "payment_mode", "custom_amounts.t1:h1"
    message: str
    fee_item_id: Optional[str] = None


class Ok(BaseModel, Generic[T]):
    ok: bool = True
    value: T
    warnings: List[str] = Field(default_factory=list)


class Err(BaseModel):
    ok: bool = False
    kind: ErrorKind
    message: str
    errors: List[FieldError] = Field(default_factory=list)


Result = Union[Ok[T], Err]


def validation_error(errors: List[FieldError]) -> Err:
    return Err(
        kind=ErrorKind.validation,
        message="; ".join(e.message for e in errors),
        errors=errors,
    )
