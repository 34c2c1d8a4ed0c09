from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from src.domain.state_machine import OrderStatus, TicketStatus


class CartItemRequest(BaseModel):
    ticket_type_id: str
    quantity: int = Field(ge=1, le=10)


class ReserveOrderRequest(BaseModel):
    user_id: str
    event_id: str
    items: list[CartItemRequest] = Field(min_length=1)
    discount_code: str | None = None


class OrderItemResponse(BaseModel):
    id: str
    ticket_type_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class TicketResponse(BaseModel):
    id: str
    ticket_type_id: str
    user_id: str
    status: TicketStatus
    qr_code: str | None = None
    checked_in_at: datetime | None = None
    transferred_at: datetime | None = None
    original_owner_id: str | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None


class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: str
    event_id: str
    status: OrderStatus
    subtotal: Decimal
    discount_amount: Decimal
    service_fee: Decimal
    amount: Decimal
    currency: str
    expires_at: datetime | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    refunded_at: datetime | None = None
    items: list[OrderItemResponse]
    tickets: list[TicketResponse]


class OrderPageResponse(BaseModel):
    items: list[OrderResponse]
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class CancelOrderRequest(BaseModel):
    user_id: str


class PaymentIntentRequest(BaseModel):
    user_id: str
    order_id: str
    user_email: str | None = None


class PaymentIntentResponse(BaseModel):
    intent_id: str
    client_secret: str
    amount: Decimal
    currency: str


class ConfirmPaymentRequest(BaseModel):
    user_id: str
    intent_id: str
    client_secret: str
    method: str = "card"


class ConfirmPaymentResponse(BaseModel):
    order: OrderResponse
    tickets: list[TicketResponse]


class PaymentFailedRequest(BaseModel):
    user_id: str | None = None


class RefundOrderRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class RefundOrderResponse(BaseModel):
    order: OrderResponse
    payment_refunded: bool | None = None


class TransferTicketRequest(BaseModel):
    user_id: str
    recipient_user_id: str


class TicketRefundRequest(BaseModel):
    user_id: str
    reason: str = Field(min_length=1, max_length=500)


class VerifyTicketRequest(BaseModel):
    qr_code: str


class SweepResponse(BaseModel):
    found: int
    expired: int
    skipped: int
    failed: int


class TicketPageResponse(BaseModel):
    items: list[TicketResponse]
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class AttendeePageResponse(TicketPageResponse):
    checked_in_count: int
    not_checked_in_count: int


class CheckinRequest(BaseModel):
    code: str | None = None
    ticket_id: str | None = None
    staff_id: str | None = None


class BulkCheckinRequest(BaseModel):
    codes: list[str] = Field(min_length=1, max_length=100)
    staff_id: str | None = None


class CheckinOutcomeResponse(BaseModel):
    code: str
    success: bool
    ticket_id: str | None = None
    message: str


class BulkCheckinResponse(BaseModel):
    successful: int
    failed: int
    results: list[CheckinOutcomeResponse]
