# src/infrastructure/repositories/audit_repository.py

import json
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import AdminLog, OutboxEvent


class AdminLogRepository:

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str | int | None,
        details: dict[str, Any] | None = None,
        actor: str | None = None,
    ) -> AdminLog:
        entry = AdminLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor=actor,
            details=details or {},
        )
        self.db.add(entry)
        return entry

    def list_entries(self, action: str | None = None, limit: int = 100) -> list[AdminLog]:
        stmt = select(AdminLog).order_by(AdminLog.created_at.desc(), AdminLog.id)
        if action:
            stmt = stmt.where(AdminLog.action == action)
        return list(self.db.execute(stmt.limit(limit)).scalars().all())


class OutboxRepository:

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
        dedupe_key: str,
    ) -> None:
        existing = self.db.execute(
            select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key)
        ).scalar_one_or_none()
        if existing:
            return

        self.db.add(
            OutboxEvent(
                aggregate_type=aggregate_type,
                aggregate_id=aggregate_id,
                event_type=event_type,
                payload=json.dumps(payload, sort_keys=True, default=str),
                dedupe_key=dedupe_key,
                status="PENDING",
                attempts=0,
            )
        )

    def get_by_id(self, outbox_id: str) -> OutboxEvent | None:
        stmt = select(OutboxEvent).where(OutboxEvent.id == outbox_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_by_status(self, status: str, limit: int = 50) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == status)
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_pending(self, max_attempts: int, limit: int = 50) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == "PENDING")
            .where(OutboxEvent.attempts < max_attempts)
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())
