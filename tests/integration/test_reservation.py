# tests/integration/test_reservation.py

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from src.application.reservation_service import CartItem, ReservationService, merge_cart
from src.domain.clock import as_utc, utc_now
from src.domain.exceptions import (
    BadRequestError,
    DiscountCodeError,
    ForbiddenError,
    InsufficientInventoryError,
    NotFoundError,
    RetryableConflictError,
)
from src.domain.state_machine import OrderStatus, TicketStatus
from src.infrastructure.db.models import DiscountCode, Order, Ticket, TicketType


def test_reserve_creates_pending_order_with_reserved_tickets(db, seed):
    event = seed.event()
    general = seed.ticket_type(event, capacity=10)
    now = utc_now()

    order = ReservationService(db).reserve(
        "user-1",
        event.id,
        [CartItem(general.id, 3)],
        now=now,
    )

    assert order.status == OrderStatus.PENDING
    assert as_utc(order.expires_at) == now + timedelta(minutes=15)
    assert order.order_number.startswith(f"ORD-{now.year}-")
    assert len(order.tickets) == 3
    assert all(ticket.status == TicketStatus.RESERVED for ticket in order.tickets)
    assert all(ticket.qr_code is None for ticket in order.tickets)

    stored = seed.reload(TicketType, general.id)
    assert stored.reserved_count == 3
    assert stored.sold_count == 0


def test_price_is_snapshotted_on_order_items(db, seed):
    event = seed.event()
    vip = seed.ticket_type(event, name="VIP", price=Decimal("450.00"))

    order = ReservationService(db).reserve("user-1", event.id, [CartItem(vip.id, 2)])

    item = order.items[0]
    assert item.unit_price == Decimal("450.00")
    assert item.total_price == Decimal("900.00")
    assert order.subtotal == Decimal("900.00")
    assert order.service_fee == Decimal("45.00")
    assert order.amount == Decimal("945.00")
    assert order.currency == "TRY"


def test_percentage_discount_applied_and_usage_counted(db, seed):
    event = seed.event()
    general = seed.ticket_type(event, price=Decimal("150.00"))
    code = seed.discount_code(event, code="SAVE10")

    order = ReservationService(db).reserve(
        "user-1",
        event.id,
        [CartItem(general.id, 2)],
        discount_code=" SAVE10 ",
    )

    assert order.subtotal == Decimal("300.00")
    assert order.discount_amount == Decimal("30.00")
    assert order.service_fee == Decimal("13.50")
    assert order.amount == Decimal("283.50")
    assert order.discount_code_id == code.id
    assert seed.reload(DiscountCode, code.id).used_count == 1


def test_unknown_discount_code_rejects_whole_order(db, seed):
    event = seed.event()
    general = seed.ticket_type(event)

    with pytest.raises(DiscountCodeError, match="Invalid discount code"):
        ReservationService(db).reserve(
            "user-1",
            event.id,
            [CartItem(general.id, 1)],
            discount_code="NOPE",
        )

    assert seed.reload(TicketType, general.id).reserved_count == 0


def test_exhausted_discount_code_rejected(db, seed):
    event = seed.event()
    general = seed.ticket_type(event)
    seed.discount_code(event, code="ONCE", max_uses=1, used_count=1)

    with pytest.raises(DiscountCodeError, match="usage limit"):
        ReservationService(db).reserve(
            "user-1",
            event.id,
            [CartItem(general.id, 1)],
            discount_code="ONCE",
        )


def test_duplicate_cart_lines_are_merged(db, seed):
    event = seed.event()
    general = seed.ticket_type(event)

    order = ReservationService(db).reserve(
        "user-1",
        event.id,
        [CartItem(general.id, 1), CartItem(general.id, 2)],
    )

    assert len(order.items) == 1
    assert order.items[0].quantity == 3
    assert seed.reload(TicketType, general.id).reserved_count == 3


def test_merge_cart_rejects_non_positive_quantity():
    with pytest.raises(BadRequestError):
        merge_cart([CartItem("a", 0)])


def test_empty_cart_rejected(db, seed):
    event = seed.event()

    with pytest.raises(BadRequestError):
        ReservationService(db).reserve("user-1", event.id, [])


# ---------------------
# EVENT POLICY
# ---------------------

def test_unknown_event(db):
    with pytest.raises(NotFoundError):
        ReservationService(db).reserve("user-1", "missing", [CartItem("x", 1)])


def test_deleted_event_is_not_found(db, seed):
    event = seed.event(deleted_at=utc_now())
    general = seed.ticket_type(event)

    with pytest.raises(NotFoundError):
        ReservationService(db).reserve("user-1", event.id, [CartItem(general.id, 1)])


def test_unpublished_event_forbidden(db, seed):
    event = seed.event(status="draft")
    general = seed.ticket_type(event)

    with pytest.raises(ForbiddenError):
        ReservationService(db).reserve("user-1", event.id, [CartItem(general.id, 1)])


def test_started_event_forbidden(db, seed):
    event = seed.event(start_date=utc_now() - timedelta(hours=1))
    general = seed.ticket_type(event)

    with pytest.raises(ForbiddenError, match="already started"):
        ReservationService(db).reserve("user-1", event.id, [CartItem(general.id, 1)])


# ---------------------
# TICKET TYPE POLICY
# ---------------------

def test_unknown_ticket_type(db, seed):
    event = seed.event()

    with pytest.raises(NotFoundError):
        ReservationService(db).reserve("user-1", event.id, [CartItem("missing", 1)])


def test_ticket_type_from_other_event(db, seed):
    event = seed.event()
    other = seed.event(title="Other")
    foreign = seed.ticket_type(other)

    with pytest.raises(BadRequestError, match="does not belong"):
        ReservationService(db).reserve("user-1", event.id, [CartItem(foreign.id, 1)])


def test_inactive_ticket_type(db, seed):
    event = seed.event()
    general = seed.ticket_type(event, is_active=False)

    with pytest.raises(BadRequestError, match="not available"):
        ReservationService(db).reserve("user-1", event.id, [CartItem(general.id, 1)])


def test_sale_window(db, seed):
    event = seed.event()
    now = utc_now()
    upcoming = seed.ticket_type(event, name="Upcoming", sale_start_date=now + timedelta(days=1))
    closed = seed.ticket_type(event, name="Closed", sale_end_date=now - timedelta(days=1))

    with pytest.raises(BadRequestError, match="not started"):
        ReservationService(db).reserve("user-1", event.id, [CartItem(upcoming.id, 1)], now=now)

    with pytest.raises(BadRequestError, match="ended"):
        ReservationService(db).reserve("user-1", event.id, [CartItem(closed.id, 1)], now=now)


def test_per_order_limits(db, seed):
    event = seed.event()
    general = seed.ticket_type(event, min_per_order=2, max_per_order=4)

    with pytest.raises(BadRequestError, match="Minimum 2"):
        ReservationService(db).reserve("user-1", event.id, [CartItem(general.id, 1)])

    with pytest.raises(BadRequestError, match="Maximum 4"):
        ReservationService(db).reserve("user-1", event.id, [CartItem(general.id, 5)])


def test_insufficient_inventory_reports_remaining(db, seed):
    event = seed.event()
    general = seed.ticket_type(event, capacity=5, sold_count=2, reserved_count=1)

    with pytest.raises(InsufficientInventoryError) as exc_info:
        ReservationService(db).reserve("user-1", event.id, [CartItem(general.id, 3)])

    assert exc_info.value.available == 2
    assert exc_info.value.status_code == 409


def test_failing_line_rolls_back_whole_cart(db, seed, session_factory):
    event = seed.event()
    general = seed.ticket_type(event, name="General", capacity=10)
    vip = seed.ticket_type(event, name="VIP", capacity=1)

    with pytest.raises(InsufficientInventoryError):
        ReservationService(db).reserve(
            "user-1",
            event.id,
            [CartItem(general.id, 2), CartItem(vip.id, 2)],
        )

    assert seed.reload(TicketType, general.id).reserved_count == 0
    assert seed.reload(TicketType, vip.id).reserved_count == 0
    with session_factory() as session:
        assert session.execute(select(func.count()).select_from(Order)).scalar_one() == 0
        assert session.execute(select(func.count()).select_from(Ticket)).scalar_one() == 0


# ---------------------
# CONCURRENCY
# ---------------------

def test_concurrent_buyers_never_oversell(seed, session_factory):
    event = seed.event()
    last_seat = seed.ticket_type(event, capacity=1)
    buyers = 8
    barrier = threading.Barrier(buyers)

    def _buy(index):
        barrier.wait()
        with session_factory() as session:
            try:
                ReservationService(session).reserve(
                    f"user-{index}",
                    event.id,
                    [CartItem(last_seat.id, 1)],
                )
            except InsufficientInventoryError:
                return "sold_out"
            return "reserved"

    with ThreadPoolExecutor(max_workers=buyers) as pool:
        outcomes = list(pool.map(_buy, range(buyers)))

    assert outcomes.count("reserved") == 1
    assert outcomes.count("sold_out") == buyers - 1

    stored = seed.reload(TicketType, last_seat.id)
    assert stored.reserved_count == 1
    assert stored.sold_count + stored.reserved_count <= stored.capacity

    with session_factory() as session:
        held = session.execute(
            select(func.count())
            .select_from(Ticket)
            .where(Ticket.ticket_type_id == last_seat.id)
            .where(Ticket.status.in_([TicketStatus.RESERVED, TicketStatus.CONFIRMED]))
        ).scalar_one()
    assert held == 1
    assert held <= stored.capacity


def test_lock_wait_surfaces_as_retryable_conflict(seed, engine, make_engine):
    event = seed.event()
    general = seed.ticket_type(event, capacity=5)
    impatient = sessionmaker(bind=make_engine(busy_timeout=0.2), expire_on_commit=False)

    holder = engine.connect()
    holder.begin()
    try:
        with impatient() as session:
            with pytest.raises(RetryableConflictError) as excinfo:
                ReservationService(session).reserve("user-1", event.id, [CartItem(general.id, 2)])
    finally:
        holder.rollback()
        holder.close()

    assert excinfo.value.status_code == 409
    assert seed.reload(TicketType, general.id).reserved_count == 0
