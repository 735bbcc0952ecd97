"""Call history persistence service."""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from frontdesk.db.models import CallRecord
from frontdesk.services.call_session.models import CallSession

logger = logging.getLogger(__name__)


def _naive_utc(value):
    # DateTime columns are timezone-naive UTC
    return value.replace(tzinfo=None) if value is not None and value.tzinfo else value


class CallHistoryStore:
    """Writes one row per ended call."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(self, session: CallSession) -> Optional[CallRecord]:
        """
        Persist an ended session.

        Recording the same call twice returns the existing row.
        """
        async with self.session_factory() as db:
            existing = await self._get(db, session.call_id)
            if existing:
                return existing

            record = CallRecord(
                call_id=session.call_id,
                caller_number=session.caller_number,
                disposition=str(session.disposition) if session.disposition else "ABANDONED",
                final_phase=str(session.phase),
                transcript=session.get_transcript_text() or None,
                started_at=_naive_utc(session.created_at),
                ended_at=_naive_utc(session.ended_at or session.last_updated_at),
            )
            db.add(record)
            await db.commit()
            await db.refresh(record)
            logger.info(
                f"[HISTORY] Call recorded - CallId: {session.call_id}, Disposition: {record.disposition}"
            )
            return record

    async def get(self, call_id: str) -> Optional[CallRecord]:
        async with self.session_factory() as db:
            return await self._get(db, call_id)

    async def list_recent(self, limit: int = 50) -> List[CallRecord]:
        """Most recently ended calls first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(CallRecord).order_by(CallRecord.ended_at.desc(), CallRecord.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    @staticmethod
    async def _get(db, call_id: str) -> Optional[CallRecord]:
        result = await db.execute(select(CallRecord).where(CallRecord.call_id == call_id))
        return result.scalar_one_or_none()
