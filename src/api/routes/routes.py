import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.infrastructure.db.session import SessionLocal
from src.infrastructure.db.models import Order, Ticket
from src.infrastructure.chat import ChatService, get_chat_service
from src.infrastructure.payments.payment_provider import PaymentProvider
from src.infrastructure.payments.payments_config import get_payment_provider
from src.application.reservation_service import CartItem, ReservationService
from src.application.cancellation_service import CancellationService
from src.application.checkin_service import AttendeePage, CheckinService
from src.application.confirmation_service import enroll_buyer_in_event_chat
from src.application.expiration_reaper import ExpirationReaper
from src.application.order_query_service import OrderPage, OrderQueryService
from src.application.payment_service import PaymentService
from src.application.refund_service import RefundService
from src.application.ticket_service import TicketPage, TicketService
from src.api.schemas.schemas import (
    AttendeePageResponse,
    BulkCheckinRequest,
    BulkCheckinResponse,
    CheckinOutcomeResponse,
    CheckinRequest,
    CancelOrderRequest,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    OrderItemResponse,
    OrderPageResponse,
    OrderResponse,
    PaymentFailedRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
    RefundOrderRequest,
    RefundOrderResponse,
    ReserveOrderRequest,
    SweepResponse,
    TicketPageResponse,
    TicketRefundRequest,
    TicketResponse,
    TransferTicketRequest,
    VerifyTicketRequest,
)
from src.domain.exceptions import TicketingError
from src.domain.state_machine import OrderStatus, TicketStatus


router = APIRouter()
logger = logging.getLogger(__name__)

_reaper = ExpirationReaper()


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_reaper() -> ExpirationReaper:
    return _reaper


def _http_error(exc: TicketingError) -> HTTPException:
    if exc.status_code >= 500:
        logger.error("Unexpected domain error: %s", exc)
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse(
        id=ticket.id,
        ticket_type_id=ticket.ticket_type_id,
        user_id=ticket.user_id,
        status=ticket.status,
        qr_code=ticket.qr_code,
        checked_in_at=ticket.checked_in_at,
        transferred_at=ticket.transferred_at,
        original_owner_id=ticket.original_owner_id,
        refunded_at=ticket.refunded_at,
        refund_reason=ticket.refund_reason,
    )


def _order_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        event_id=order.event_id,
        status=order.status,
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        service_fee=order.service_fee,
        amount=order.amount,
        currency=order.currency,
        expires_at=order.expires_at,
        confirmed_at=order.confirmed_at,
        cancelled_at=order.cancelled_at,
        refunded_at=order.refunded_at,
        items=[
            OrderItemResponse(
                id=item.id,
                ticket_type_id=item.ticket_type_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in order.items
        ],
        tickets=[_ticket_response(ticket) for ticket in order.tickets],
    )


def _page_response(page: OrderPage) -> OrderPageResponse:
    return OrderPageResponse(
        items=[_order_response(order) for order in page.items],
        page=page.page,
        limit=page.limit,
        total=page.total,
        total_pages=page.total_pages,
        has_more=page.has_more,
    )


def _ticket_page_response(page: TicketPage) -> TicketPageResponse:
    return TicketPageResponse(
        items=[_ticket_response(ticket) for ticket in page.items],
        page=page.page,
        limit=page.limit,
        total=page.total,
        total_pages=page.total_pages,
        has_more=page.has_more,
    )


def _attendee_page_response(page: AttendeePage) -> AttendeePageResponse:
    return AttendeePageResponse(
        items=[_ticket_response(ticket) for ticket in page.items],
        page=page.page,
        limit=page.limit,
        total=page.total,
        total_pages=page.total_pages,
        has_more=page.has_more,
        checked_in_count=page.checked_in_count,
        not_checked_in_count=page.not_checked_in_count,
    )


@router.get("/health")
def health():
    return {"message": "Ticket reservation engine is running"}


# -----------------------------
# Orders
# -----------------------------
@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def reserve_order(
    request: ReserveOrderRequest,
    db: Session = Depends(get_db),
):
    service = ReservationService(db)

    try:
        order = service.reserve(
            user_id=request.user_id,
            event_id=request.event_id,
            cart=[
                CartItem(ticket_type_id=item.ticket_type_id, quantity=item.quantity)
                for item in request.items
            ],
            discount_code=request.discount_code,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc

    return _order_response(order)


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    user_id: str | None = None,
    db: Session = Depends(get_db),
):
    try:
        order = OrderQueryService(db).get_order(order_id, user_id=user_id)
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _order_response(order)


@router.get("/users/{user_id}/orders", response_model=OrderPageResponse)
def list_user_orders(
    user_id: str,
    page: int = 1,
    limit: int = 10,
    status_filter: OrderStatus | None = None,
    db: Session = Depends(get_db),
):
    result = OrderQueryService(db).list_user_orders(
        user_id,
        page=page,
        limit=limit,
        status=status_filter,
    )
    return _page_response(result)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: str,
    request: CancelOrderRequest,
    db: Session = Depends(get_db),
):
    try:
        order = CancellationService(db).cancel(order_id, user_id=request.user_id)
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _order_response(order)


# -----------------------------
# Payments
# -----------------------------
@router.post("/payments/intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    request: PaymentIntentRequest,
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    try:
        intent = PaymentService(db, provider).create_payment_intent(
            user_id=request.user_id,
            order_id=request.order_id,
            user_email=request.user_email,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc

    return PaymentIntentResponse(
        intent_id=intent.intent_id,
        client_secret=intent.client_secret,
        amount=intent.amount,
        currency=intent.currency,
    )


@router.post("/orders/{order_id}/pay", response_model=ConfirmPaymentResponse)
def pay_order(
    order_id: str,
    request: ConfirmPaymentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
    chat: ChatService = Depends(get_chat_service),
):
    try:
        result = PaymentService(db, provider).confirm_order_payment(
            user_id=request.user_id,
            order_id=order_id,
            intent_id=request.intent_id,
            client_secret=request.client_secret,
            method=request.method,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc

    if result.chat_enrollment_allowed:
        background_tasks.add_task(
            enroll_buyer_in_event_chat,
            chat,
            result.order.user_id,
            result.order.event_id,
        )

    return ConfirmPaymentResponse(
        order=_order_response(result.order),
        tickets=[_ticket_response(ticket) for ticket in result.tickets],
    )


@router.post("/orders/{order_id}/payment-failed", response_model=OrderResponse)
def payment_failed(
    order_id: str,
    request: PaymentFailedRequest,
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    try:
        order = PaymentService(db, provider).fail_order_payment(order_id, user_id=request.user_id)
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _order_response(order)


# -----------------------------
# Organizer
# -----------------------------
@router.get("/organizer/events/{event_id}/orders", response_model=OrderPageResponse)
def list_event_orders(
    event_id: str,
    page: int = 1,
    limit: int = 10,
    status_filter: OrderStatus | None = None,
    db: Session = Depends(get_db),
):
    result = OrderQueryService(db).list_event_orders(
        event_id,
        page=page,
        limit=limit,
        status=status_filter,
    )
    return _page_response(result)


@router.post(
    "/organizer/events/{event_id}/orders/{order_id}/refund",
    response_model=RefundOrderResponse,
)
def refund_order(
    event_id: str,
    order_id: str,
    request: RefundOrderRequest,
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    try:
        result = RefundService(db, refund_gateway=provider).refund(
            order_id,
            reason=request.reason,
            event_id=event_id,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc

    return RefundOrderResponse(
        order=_order_response(result.order),
        payment_refunded=result.payment_refunded,
    )


@router.get("/organizer/events/{event_id}/attendees", response_model=AttendeePageResponse)
def list_attendees(
    event_id: str,
    page: int = 1,
    limit: int = 20,
    checked_in: bool | None = None,
    ticket_type_id: str | None = None,
    db: Session = Depends(get_db),
):
    try:
        result = CheckinService(db).list_attendees(
            event_id,
            page=page,
            limit=limit,
            checked_in=checked_in,
            ticket_type_id=ticket_type_id,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _attendee_page_response(result)


@router.post("/organizer/events/{event_id}/checkin", response_model=TicketResponse)
def check_in_ticket(
    event_id: str,
    request: CheckinRequest,
    db: Session = Depends(get_db),
):
    try:
        ticket = CheckinService(db).check_in(
            event_id,
            code=request.code,
            ticket_id=request.ticket_id,
            staff_id=request.staff_id,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _ticket_response(ticket)


@router.post("/organizer/events/{event_id}/checkin/bulk", response_model=BulkCheckinResponse)
def bulk_check_in(
    event_id: str,
    request: BulkCheckinRequest,
    db: Session = Depends(get_db),
):
    try:
        result = CheckinService(db).bulk_check_in(
            event_id,
            request.codes,
            staff_id=request.staff_id,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc

    return BulkCheckinResponse(
        successful=result.successful,
        failed=result.failed,
        results=[
            CheckinOutcomeResponse(
                code=outcome.code,
                success=outcome.success,
                ticket_id=outcome.ticket_id,
                message=outcome.message,
            )
            for outcome in result.results
        ],
    )


@router.delete("/organizer/events/{event_id}/checkin/{ticket_id}", response_model=TicketResponse)
def undo_check_in(
    event_id: str,
    ticket_id: str,
    db: Session = Depends(get_db),
):
    try:
        ticket = CheckinService(db).undo_check_in(event_id, ticket_id)
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _ticket_response(ticket)


# -----------------------------
# Tickets
# -----------------------------
@router.get("/users/{user_id}/tickets", response_model=TicketPageResponse)
def list_user_tickets(
    user_id: str,
    page: int = 1,
    limit: int = 10,
    status_filter: TicketStatus | None = None,
    upcoming: bool = False,
    db: Session = Depends(get_db),
):
    result = TicketService(db).list_user_tickets(
        user_id,
        page=page,
        limit=limit,
        status=status_filter,
        upcoming=upcoming,
    )
    return _ticket_page_response(result)


@router.get("/users/{user_id}/tickets/{ticket_id}", response_model=TicketResponse)
def get_user_ticket(
    user_id: str,
    ticket_id: str,
    db: Session = Depends(get_db),
):
    try:
        ticket = TicketService(db).get_ticket(user_id, ticket_id)
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _ticket_response(ticket)


@router.post("/tickets/{ticket_id}/transfer", response_model=TicketResponse)
def transfer_ticket(
    ticket_id: str,
    request: TransferTicketRequest,
    db: Session = Depends(get_db),
):
    try:
        ticket = TicketService(db).transfer(
            user_id=request.user_id,
            ticket_id=ticket_id,
            recipient_user_id=request.recipient_user_id,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _ticket_response(ticket)


@router.post("/tickets/{ticket_id}/refund-request", response_model=TicketResponse)
def request_ticket_refund(
    ticket_id: str,
    request: TicketRefundRequest,
    db: Session = Depends(get_db),
):
    try:
        ticket = TicketService(db).request_refund(
            user_id=request.user_id,
            ticket_id=ticket_id,
            reason=request.reason,
        )
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _ticket_response(ticket)


@router.post("/tickets/verify", response_model=TicketResponse)
def verify_ticket(
    request: VerifyTicketRequest,
    db: Session = Depends(get_db),
):
    try:
        ticket = TicketService(db).verify_qr(request.qr_code)
    except TicketingError as exc:
        raise _http_error(exc) from exc
    return _ticket_response(ticket)


# -----------------------------
# Maintenance
# -----------------------------
@router.post("/admin/reaper/sweep", response_model=SweepResponse)
def run_expiration_sweep(reaper: ExpirationReaper = Depends(get_reaper)):
    result = reaper.sweep()
    return SweepResponse(
        found=result.found,
        expired=result.expired,
        skipped=result.skipped,
        failed=result.failed,
    )
