# tests/integration/test_checkin.py

from datetime import timedelta

import pytest

from src.application.checkin_service import CheckinService
from src.application.confirmation_service import ConfirmationService, PaymentConfirmation
from src.application.reservation_service import CartItem, ReservationService
from src.application.ticket_service import TicketService
from src.domain.clock import as_utc, utc_now
from src.domain.exceptions import BadRequestError, ConflictError, NotFoundError
from src.infrastructure.db.models import Event, Ticket


def _tickets(seed, session_factory, quantity=2, confirm=True, **event_fields):
    event = seed.event(**event_fields)
    general = seed.ticket_type(event)
    with session_factory() as session:
        order = ReservationService(session).reserve(
            "buyer",
            event.id,
            [CartItem(general.id, quantity)],
        )
        tickets = list(order.tickets)
        if confirm:
            tickets = ConfirmationService(session).confirm(
                order.id,
                PaymentConfirmation("mock", "intent-1"),
            ).tickets
    return event, tickets


# ---------------------
# SINGLE CHECK-IN
# ---------------------

def test_check_in_by_code(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory)
    now = utc_now()

    admitted = CheckinService(db).check_in(
        event.id,
        code=tickets[0].qr_code,
        staff_id="staff-1",
        now=now,
    )

    assert admitted.id == tickets[0].id
    stored = seed.reload(Ticket, tickets[0].id)
    assert as_utc(stored.checked_in_at) == now
    assert stored.checked_in_by == "staff-1"
    assert seed.reload(Ticket, tickets[1].id).checked_in_at is None


def test_check_in_by_ticket_id(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory, quantity=1)

    CheckinService(db).check_in(event.id, ticket_id=tickets[0].id)

    assert seed.reload(Ticket, tickets[0].id).checked_in_at is not None


def test_second_check_in_conflicts(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory, quantity=1)
    first_scan = utc_now() - timedelta(minutes=5)
    CheckinService(db).check_in(event.id, code=tickets[0].qr_code, now=first_scan)

    with pytest.raises(ConflictError, match="already checked in"):
        CheckinService(db).check_in(event.id, code=tickets[0].qr_code)

    assert as_utc(seed.reload(Ticket, tickets[0].id).checked_in_at) == first_scan


def test_code_from_another_event_is_not_admitted(db, seed, session_factory):
    event, _ = _tickets(seed, session_factory, quantity=1)
    _, foreign = _tickets(seed, session_factory, quantity=1, title="Other Show")

    with pytest.raises(NotFoundError):
        CheckinService(db).check_in(event.id, code=foreign[0].qr_code)

    assert seed.reload(Ticket, foreign[0].id).checked_in_at is None


def test_unconfirmed_ticket_cannot_be_checked_in(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory, quantity=1, confirm=False)

    with pytest.raises(ConflictError, match="status is RESERVED"):
        CheckinService(db).check_in(event.id, ticket_id=tickets[0].id)


def test_malformed_code_rejected(db, seed):
    event = seed.event()

    with pytest.raises(BadRequestError):
        CheckinService(db).check_in(event.id, code="not-a-ticket")

    with pytest.raises(BadRequestError):
        CheckinService(db).check_in(event.id)


def test_deleted_event_refuses_check_in(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory, quantity=1)
    with session_factory() as session:
        session.get(Event, event.id).deleted_at = utc_now()
        session.commit()

    with pytest.raises(NotFoundError, match="Event not found"):
        CheckinService(db).check_in(event.id, code=tickets[0].qr_code)


# ---------------------
# UNDO
# ---------------------

def test_undo_check_in_restores_transfer(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory, quantity=1)
    CheckinService(db).check_in(event.id, code=tickets[0].qr_code, staff_id="staff-1")

    restored = CheckinService(db).undo_check_in(event.id, tickets[0].id)

    assert restored.checked_in_at is None
    assert restored.checked_in_by is None
    assert TicketService(db).transfer("buyer", tickets[0].id, "friend").user_id == "friend"


def test_undo_requires_checked_in_ticket(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory, quantity=1)

    with pytest.raises(BadRequestError, match="not checked in"):
        CheckinService(db).undo_check_in(event.id, tickets[0].id)


# ---------------------
# BULK
# ---------------------

def test_bulk_check_in_reports_each_code(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory, quantity=2)
    codes = [
        tickets[0].qr_code,
        tickets[0].qr_code,
        "TICKET-0123456789ABCDEF-ABCD",
        "garbage",
        tickets[1].qr_code,
    ]

    result = CheckinService(db).bulk_check_in(event.id, codes, staff_id="staff-1")

    assert result.successful == 2
    assert result.failed == 3
    assert [outcome.success for outcome in result.results] == [True, False, False, False, True]
    assert "already checked in" in result.results[1].message
    assert result.results[2].message == "Ticket not found"
    assert result.results[3].message == "Malformed ticket code"
    assert all(seed.reload(Ticket, t.id).checked_in_at is not None for t in tickets)


def test_bulk_check_in_is_capped(db, seed):
    event = seed.event()

    with pytest.raises(BadRequestError):
        CheckinService(db).bulk_check_in(event.id, ["garbage"] * 101)


# ---------------------
# ATTENDEES
# ---------------------

def test_attendee_list_counts_check_ins(db, seed, session_factory):
    event, tickets = _tickets(seed, session_factory, quantity=3)
    _tickets(seed, session_factory, quantity=1, confirm=False)
    CheckinService(db).check_in(event.id, code=tickets[1].qr_code)

    page = CheckinService(db).list_attendees(event.id)

    assert page.total == 3
    assert page.checked_in_count == 1
    assert page.not_checked_in_count == 2
    assert page.items[0].id == tickets[1].id

    admitted = CheckinService(db).list_attendees(event.id, checked_in=True)
    assert [ticket.id for ticket in admitted.items] == [tickets[1].id]

    waiting = CheckinService(db).list_attendees(event.id, checked_in=False, limit=1)
    assert waiting.total == 2
    assert waiting.has_more


def test_attendee_list_for_unknown_event(db):
    with pytest.raises(NotFoundError):
        CheckinService(db).list_attendees("missing-event")
