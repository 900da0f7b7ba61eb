# src/infrastructure/repositories/hold_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from src.infrastructure.db.models import SeatHold


HOLD_ACTIVE = "active"
HOLD_COMPLETED = "completed"
HOLD_RELEASED = "released"
HOLD_EXPIRED = "expired"


class HoldRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, hold_id: str) -> SeatHold | None:
        stmt = select(SeatHold).where(SeatHold.id == hold_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_active(
        self,
        event_id: int,
        started_after: datetime,
        table_id: int | None = None,
        any_table: bool = False,
    ) -> list[SeatHold]:
        """
        Holds that still block inventory. `started_after` is `now - timeout`;
        anything older is expired whether or not the sweeper has seen it.
        """
        stmt = (
            select(SeatHold)
            .where(SeatHold.event_id == event_id)
            .where(SeatHold.status == HOLD_ACTIVE)
            .where(SeatHold.hold_start_time >= started_after)
        )
        if not any_table:
            if table_id is None:
                stmt = stmt.where(SeatHold.table_id.is_(None))
            else:
                stmt = stmt.where(SeatHold.table_id == table_id)
        return list(self.db.execute(stmt.order_by(SeatHold.hold_start_time)).scalars().all())

    def find_active_for_customer(
        self,
        event_id: int,
        table_id: int | None,
        customer_refs: list[str],
    ) -> list[SeatHold]:
        if not customer_refs:
            return []
        stmt = (
            select(SeatHold)
            .where(SeatHold.event_id == event_id)
            .where(SeatHold.status == HOLD_ACTIVE)
            .where(SeatHold.customer_ref.in_(customer_refs))
        )
        if table_id is None:
            stmt = stmt.where(SeatHold.table_id.is_(None))
        else:
            stmt = stmt.where(SeatHold.table_id == table_id)
        return list(self.db.execute(stmt).scalars().all())

    def create(
        self,
        event_id: int,
        table_id: int | None,
        seat_numbers: list[int],
        party_size: int,
        customer_ref: str,
        hold_start_time: datetime,
    ) -> SeatHold:
        hold = SeatHold(
            event_id=event_id,
            table_id=table_id,
            seat_numbers=list(seat_numbers),
            party_size=party_size,
            customer_ref=customer_ref,
            hold_start_time=hold_start_time,
            status=HOLD_ACTIVE,
        )
        self.db.add(hold)
        return hold

    def close(self, hold: SeatHold, status: str, closed_at: datetime) -> None:
        hold.status = status
        hold.closed_at = closed_at

    def expire_started_before(self, cutoff: datetime, closed_at: datetime) -> int:
        stmt = (
            update(SeatHold)
            .where(SeatHold.status == HOLD_ACTIVE)
            .where(SeatHold.hold_start_time < cutoff)
            .values(status=HOLD_EXPIRED, closed_at=closed_at)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount or 0
