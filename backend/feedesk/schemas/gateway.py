# feedesk/schemas/gateway.py
#
# Payment-gateway webhook payloads as a tagged union on "event".
# The gateway adapter (n8n or a hosted checkout) posts one of:
#
#   payment_link.generated  → LinkGenerated
#   payment.verified        → PaymentVerified
#   payment.failed          → PaymentFailed
#
# Anything else fails validation before it reaches the ledger.

from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from decimal import Decimal

from feedesk.utils.money import MAX_AMOUNT


class GatewayFeeLine(BaseModel):
    fee_head_id: str
    fee_term_id: str
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)


class LinkGenerated(BaseModel):
    event: Literal["payment_link.generated"]
    event_id: str
    branch_id: str
    session_id: str
    student_id: str
    order_id: str
    payment_url: str
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    expires_at: Optional[datetime] = None


class PaymentVerified(BaseModel):
    event: Literal["payment.verified"]
    event_id: str
    branch_id: str
    session_id: str
    student_id: str
    order_id: str
    gateway_payment_id: str
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    fees: List[GatewayFeeLine] = Field(min_length=1)


class PaymentFailed(BaseModel):
    event: Literal["payment.failed"]
    event_id: str
    branch_id: str
    session_id: str
    student_id: str
    order_id: str
    reason: str = "unknown"


GatewayEvent = Annotated[
    Union[LinkGenerated, PaymentVerified, PaymentFailed],
    Field(discriminator="event"),
]

gateway_event_adapter: TypeAdapter = TypeAdapter(GatewayEvent)


class PaymentLinkRequest(BaseModel):
    branch_id: str
    session_id: str
    selected_fee_ids: List[str] = Field(min_length=1)
    guardian_phone: str = Field(min_length=8)
