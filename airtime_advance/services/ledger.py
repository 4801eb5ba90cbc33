"""Append-only audit ledger"""

import threading
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from airtime_advance.domain.models import EntityType, LedgerEvent, LedgerEventType
from airtime_advance.infrastructure.database.repositories import LedgerRepository
from airtime_advance.infrastructure.scheduler import Clock
from airtime_advance.utils.serialization import to_jsonable


class Ledger:
    """
    System of record for every domain-significant transition.

    Offers append and query only; entries are never updated or removed.
    """

    def __init__(self, session_factory: sessionmaker, clock: Clock):
        self._session_factory = session_factory
        self._clock = clock
        self._lock = threading.Lock()

    def append(
        self,
        event_type: LedgerEventType,
        entity_id: str,
        entity_type: EntityType,
        msisdn: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> LedgerEvent:
        event = LedgerEvent(
            event_id=str(uuid.uuid4()),
            type=event_type,
            entity_id=entity_id,
            entity_type=entity_type,
            msisdn=msisdn,
            timestamp=self._clock.now(),
            payload=to_jsonable({"msisdn": msisdn, **(payload or {})}),
        )
        with self._lock, self._session_factory() as db:
            try:
                LedgerRepository(db).add(event)
                db.commit()
            except Exception:
                db.rollback()
                raise
        return event

    def query(
        self,
        entity_id: Optional[str] = None,
        entity_type: Optional[EntityType] = None,
        msisdn: Optional[str] = None,
        event_type: Optional[LedgerEventType] = None,
        limit: int = 100,
    ) -> List[LedgerEvent]:
        """Entries matching every given filter, newest first"""
        with self._lock, self._session_factory() as db:
            return LedgerRepository(db).query(
                entity_id=entity_id,
                entity_type=entity_type,
                msisdn=msisdn,
                event_type=event_type,
                limit=limit,
            )

    def count(self) -> int:
        with self._lock, self._session_factory() as db:
            return LedgerRepository(db).count()
