from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import delete, select

from src.domain.pricing import DiscountType
from src.infrastructure.db.models import Base, DiscountCode, Event, TicketType
from src.infrastructure.db.session import engine, get_db_session


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


EVENT_DEFS = [
    {
        "title": "Istanbul Jazz Night",
        "start_date": _dt(days_from_now=10, hour=19, minute=30),
        "settings": {"allow_chat": True},
        "ticket_types": [
            {"name": "General", "price": "150.00", "capacity": 450},
            {"name": "VIP", "price": "450.00", "capacity": 150, "max_per_order": 4},
        ],
        "discount_codes": [
            {"code": "JAZZ10", "type": DiscountType.PERCENTAGE, "value": "10", "max_uses": 200},
        ],
    },
    {
        "title": "Open Source Summit",
        "start_date": _dt(days_from_now=21, hour=9, minute=0),
        "settings": {"allow_chat": False},
        "ticket_types": [
            {"name": "Standard", "price": "300.00", "capacity": 800},
            {"name": "Workshop", "price": "750.00", "capacity": 100, "max_per_order": 2},
        ],
        "discount_codes": [
            {
                "code": "EARLY50",
                "type": DiscountType.AMOUNT,
                "value": "50",
                "min_purchase_amount": "300",
            },
        ],
    },
]


def seed_event(db, item: dict) -> Event:
    existing = db.execute(
        select(Event).where(Event.title == item["title"])
    ).scalar_one_or_none()
    if existing:
        db.execute(delete(DiscountCode).where(DiscountCode.event_id == existing.id))
        db.execute(delete(TicketType).where(TicketType.event_id == existing.id))
        event = existing
        event.start_date = item["start_date"]
        event.settings = item["settings"]
    else:
        event = Event(
            title=item["title"],
            status="published",
            start_date=item["start_date"],
            settings=item["settings"],
        )
        db.add(event)
        db.flush()

    for ticket_type in item["ticket_types"]:
        db.add(
            TicketType(
                event_id=event.id,
                name=ticket_type["name"],
                price=Decimal(ticket_type["price"]),
                capacity=ticket_type["capacity"],
                max_per_order=ticket_type.get("max_per_order", 10),
            )
        )

    for discount in item["discount_codes"]:
        min_purchase = discount.get("min_purchase_amount")
        db.add(
            DiscountCode(
                event_id=event.id,
                code=discount["code"],
                type=discount["type"],
                value=Decimal(discount["value"]),
                max_uses=discount.get("max_uses"),
                min_purchase_amount=Decimal(min_purchase) if min_purchase else None,
            )
        )

    return event


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        for item in EVENT_DEFS:
            seed_event(db, item)
    print("Seed complete: Istanbul Jazz Night and Open Source Summit with ticket types and codes.")


if __name__ == "__main__":
    main()
