"""Database models."""
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CallRecord(Base):
    """Ended call history."""

    __tablename__ = "call_records"

    id = Column(Integer, primary_key=True, index=True)
    call_id = Column(String, unique=True, index=True, nullable=False)
    caller_number = Column(String, nullable=True)
    disposition = Column(String, nullable=False)  # CONNECTED, VOICEMAIL, FORWARDING, BLOCKED, ABANDONED, ERROR
    final_phase = Column(String, nullable=False)
    transcript = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
