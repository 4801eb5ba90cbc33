"""SQLAlchemy ORM models for the audit ledger"""

from sqlalchemy import JSON, Column, DateTime, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class LedgerRecord(Base):
    """Append-only audit entry; rows are never updated or deleted"""

    __tablename__ = "ledger_event"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # Insertion order, breaks timestamp ties
    event_id = Column(Text, nullable=False, unique=True)
    type = Column(Text, nullable=False, index=True)
    entity_id = Column(Text, nullable=False, index=True)
    entity_type = Column(Text, nullable=False)
    msisdn = Column(Text, nullable=True, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    payload = Column(JSON, nullable=False)
