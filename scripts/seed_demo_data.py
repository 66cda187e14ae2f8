from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from src.infrastructure.db.models import Event, TicketType
from src.infrastructure.db.session import Base, engine, get_db_session


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    cet = timezone(timedelta(hours=1))
    now_cet = datetime.now(cet)
    target = now_cet + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_events(db) -> None:
    event_defs = [
        {
            "title": "Prishtina Jazz Night",
            "description": "An evening of live jazz with local and guest bands.",
            "date_time": _dt(days_from_now=10, hour=20, minute=0),
            "location": "Prishtina",
            "venue": "National Theatre",
            "ticket_types": [
                {"name": "Regular", "price_cents": 2500, "capacity": 300},
                {"name": "VIP", "price_cents": 6000, "capacity": 40},
            ],
        },
        {
            "title": "Summer Open Air Festival",
            "description": "Two stages, one night.",
            "date_time": _dt(days_from_now=21, hour=18, minute=30),
            "location": "Prizren",
            "venue": "Fortress Grounds",
            "ticket_types": [
                {"name": "General", "price_cents": 1500, "capacity": 1200},
                {"name": "Early Bird", "price_cents": 1000, "capacity": 200},
            ],
        },
    ]

    for item in event_defs:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            # Capacity of an existing event is left alone; live bookings hold part of it.
            existing.description = item["description"]
            existing.date_time = item["date_time"]
            existing.location = item["location"]
            existing.venue = item["venue"]
            continue

        event = Event(
            title=item["title"],
            description=item["description"],
            date_time=item["date_time"],
            location=item["location"],
            venue=item["venue"],
            status="published",
        )
        db.add(event)
        db.flush()

        for ticket in item["ticket_types"]:
            db.add(
                TicketType(
                    event_id=event.id,
                    name=ticket["name"],
                    price_cents=ticket["price_cents"],
                    capacity=ticket["capacity"],
                    available_tickets=ticket["capacity"],
                )
            )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_events(db)
    print("Seed complete: Prishtina Jazz Night and Summer Open Air Festival added.")


if __name__ == "__main__":
    main()
