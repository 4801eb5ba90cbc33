"""Data access layer for the audit ledger"""

from datetime import timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from airtime_advance.domain.models import EntityType, LedgerEvent, LedgerEventType
from airtime_advance.infrastructure.database.models import LedgerRecord


class LedgerRepository:
    """Repository for ledger entries; exposes insert and read only"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, event: LedgerEvent) -> None:
        """Stage a ledger entry; the caller commits"""
        self.db.add(
            LedgerRecord(
                event_id=event.event_id,
                type=event.type.value,
                entity_id=event.entity_id,
                entity_type=event.entity_type.value,
                msisdn=event.msisdn,
                timestamp=event.timestamp.astimezone(timezone.utc),
                payload=event.payload,
            )
        )
        self.db.flush()

    def query(
        self,
        entity_id: Optional[str] = None,
        entity_type: Optional[EntityType] = None,
        msisdn: Optional[str] = None,
        event_type: Optional[LedgerEventType] = None,
        limit: int = 100,
    ) -> List[LedgerEvent]:
        """Fetch entries newest first"""
        query = self.db.query(LedgerRecord)
        if entity_id:
            query = query.filter(LedgerRecord.entity_id == entity_id)
        if entity_type:
            query = query.filter(LedgerRecord.entity_type == entity_type.value)
        if msisdn:
            query = query.filter(LedgerRecord.msisdn == msisdn)
        if event_type:
            query = query.filter(LedgerRecord.type == event_type.value)

        records = (
            query.order_by(LedgerRecord.timestamp.desc(), LedgerRecord.seq.desc())
            .limit(limit)
            .all()
        )
        return [self._to_domain(r) for r in records]

    def count(self) -> int:
        return self.db.query(LedgerRecord).count()

    @staticmethod
    def _to_domain(record: LedgerRecord) -> LedgerEvent:
        timestamp = record.timestamp
        if timestamp.tzinfo is None:
            # SQLite drops the offset; values are stored in UTC
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return LedgerEvent(
            event_id=record.event_id,
            type=LedgerEventType(record.type),
            entity_id=record.entity_id,
            entity_type=EntityType(record.entity_type),
            msisdn=record.msisdn,
            timestamp=timestamp,
            payload=dict(record.payload or {}),
        )
