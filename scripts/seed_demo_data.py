from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from src.application.availability_sync import AvailabilitySynchronizer
from src.domain.validation import EventType
from src.infrastructure.db.models import Base, Event, VenueTable
from src.infrastructure.db.session import engine, get_db_session


VENUE_ID = 1


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    target = datetime.now(timezone.utc) + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_tables(db) -> None:
    layout = [
        ("Main Floor", "1", 2),
        ("Main Floor", "2", 4),
        ("Main Floor", "3", 4),
        ("Main Floor", "4", 6),
        ("Mezzanine", "M1", 4),
        ("Mezzanine", "M2", 8),
    ]

    for floor, label, capacity in layout:
        existing = db.execute(
            select(VenueTable)
            .where(VenueTable.venue_id == VENUE_ID)
            .where(VenueTable.floor == floor)
            .where(VenueTable.table_label == label)
        ).scalar_one_or_none()
        if existing:
            existing.capacity = capacity
            continue

        db.add(
            VenueTable(
                venue_id=VENUE_ID,
                floor=floor,
                table_label=label,
                capacity=capacity,
            )
        )


def seed_events(db) -> None:
    event_defs = [
        {
            "title": "Jazz Supper Club",
            "event_type": EventType.TABLE,
            "date": _dt(days_from_now=10, hour=19, minute=30),
            "total_seats": 28,
            "total_tables": 6,
        },
        {
            "title": "Wine Tasting Evening",
            "event_type": EventType.TICKET_ONLY,
            "date": _dt(days_from_now=15, hour=18, minute=0),
            "total_seats": 60,
            "total_tables": 0,
        },
        {
            "title": "Members Preview Night",
            "event_type": EventType.TABLE,
            "date": _dt(days_from_now=21, hour=20, minute=0),
            "total_seats": 28,
            "total_tables": 6,
            "is_private": True,
            "access_code": "PREVIEW",
        },
    ]

    for item in event_defs:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            existing.event_type = item["event_type"]
            existing.date = item["date"]
            existing.total_seats = item["total_seats"]
            existing.total_tables = item["total_tables"]
            existing.is_private = item.get("is_private", False)
            existing.access_code = item.get("access_code")
            continue

        db.add(
            Event(
                title=item["title"],
                event_type=item["event_type"],
                venue_id=VENUE_ID,
                date=item["date"],
                total_seats=item["total_seats"],
                available_seats=item["total_seats"],
                total_tables=item["total_tables"],
                available_tables=item["total_tables"],
                is_private=item.get("is_private", False),
                access_code=item.get("access_code"),
            )
        )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_tables(db)
        seed_events(db)
        db.flush()
        # Counters are derived; recompute instead of trusting the seed values.
        AvailabilitySynchronizer(db).sync_all_events_availability()
    print("Seed complete: venue tables, supper club, wine tasting and members night added.")


if __name__ == "__main__":
    main()
