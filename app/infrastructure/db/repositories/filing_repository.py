# app/infrastructure/db/repositories/filing_repository.py
"""
Filing aggregate repositories.

Both implementations persist the whole aggregate and enforce:
  * optimistic locking: save() is a compare-and-set on ``version``
  * at most one in-progress filing per (owner, assessment year, filing_for)
  * acknowledgement numbers are unique across filings
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.errors import ConcurrentModification, DuplicateFiling, FilingNotFound
from app.domain.models.filing import Filing
from app.infrastructure.db.models import FilingRow

logger = logging.getLogger("filing_repository")


class InMemoryFilingRepository:
    """Process-local repository; stores serialized copies so callers never share state."""

    def __init__(self) -> None:
        self._rows: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def get(self, filing_id: str) -> Filing | None:
        row = self._rows.get(filing_id)
        return Filing.from_dict(copy.deepcopy(row)) if row else None

    async def find_in_progress(self, owner_id: str, assessment_year: str, filing_for: str) -> Filing | None:
        for row in self._rows.values():
            filing = Filing.from_dict(copy.deepcopy(row))
            if (
                filing.owner_id == owner_id
                and filing.assessment_year == assessment_year
                and filing.filing_for == filing_for
                and filing.is_in_progress
            ):
                return filing
        return None

    async def find_by_ack(self, ack_number: str) -> Filing | None:
        for row in self._rows.values():
            if row.get("ack_number") == ack_number:
                return Filing.from_dict(copy.deepcopy(row))
        return None

    async def add(self, filing: Filing) -> Filing:
        async with self._lock:
            existing = await self.find_in_progress(filing.owner_id, filing.assessment_year, filing.filing_for)
            if existing is not None and filing.is_in_progress:
                raise DuplicateFiling(existing.filing_id)
            self._rows[filing.filing_id] = filing.to_dict()
        return filing

    async def save(self, filing: Filing, expected_version: int) -> Filing:
        async with self._lock:
            row = self._rows.get(filing.filing_id)
            if row is None:
                raise FilingNotFound(filing.filing_id)
            if row["version"] != expected_version:
                raise ConcurrentModification(filing.filing_id, expected_version, row["version"])
            if filing.ack_number:
                clash = await self.find_by_ack(filing.ack_number)
                if clash is not None and clash.filing_id != filing.filing_id:
                    raise ConcurrentModification(filing.filing_id, expected_version, None)
            filing.version = expected_version + 1
            filing.updated_at = datetime.now(timezone.utc)
            self._rows[filing.filing_id] = filing.to_dict()
        return filing


class SqlFilingRepository:
    """Async SQLAlchemy repository; one short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def _to_filing(row: FilingRow) -> Filing:
        filing = Filing.from_dict(json.loads(row.payload_json))
        filing.version = row.version
        return filing

    @staticmethod
    def _columns(filing: Filing) -> dict:
        return {
            "owner_id": filing.owner_id,
            "assessment_year": filing.assessment_year,
            "filing_for": filing.filing_for,
            "itr_type": filing.itr_type.value,
            "status": filing.status.value,
            "in_progress": filing.is_in_progress,
            "ack_number": filing.ack_number,
            "current_version_id": filing.current_version_id if filing.voided_at is None else None,
            "revises_filing_id": filing.revises_filing_id,
            "payload_json": json.dumps(filing.to_dict(), default=str),
            "updated_at": filing.updated_at,
        }

    async def get(self, filing_id: str) -> Filing | None:
        async with self.session_factory() as db:
            result = await db.execute(select(FilingRow).where(FilingRow.filing_id == filing_id))
            row = result.scalar_one_or_none()
            return self._to_filing(row) if row else None

    async def find_in_progress(self, owner_id: str, assessment_year: str, filing_for: str) -> Filing | None:
        async with self.session_factory() as db:
            stmt = select(FilingRow).where(
                FilingRow.owner_id == owner_id,
                FilingRow.assessment_year == assessment_year,
                FilingRow.filing_for == filing_for,
                FilingRow.in_progress.is_(True),
            )
            row = (await db.execute(stmt)).scalar_one_or_none()
            return self._to_filing(row) if row else None

    async def find_by_ack(self, ack_number: str) -> Filing | None:
        async with self.session_factory() as db:
            stmt = select(FilingRow).where(FilingRow.ack_number == ack_number)
            row = (await db.execute(stmt)).scalar_one_or_none()
            return self._to_filing(row) if row else None

    async def add(self, filing: Filing) -> Filing:
        try:
            async with self.session_factory() as db, db.begin():
                db.add(FilingRow(
                    filing_id=filing.filing_id,
                    version=filing.version,
                    created_at=filing.created_at,
                    **self._columns(filing),
                ))
        except IntegrityError:
            existing = await self.find_in_progress(filing.owner_id, filing.assessment_year, filing.filing_for)
            if existing is None:
                raise
            raise DuplicateFiling(existing.filing_id) from None
        return filing

    async def save(self, filing: Filing, expected_version: int) -> Filing:
        new_version = expected_version + 1
        filing.updated_at = datetime.now(timezone.utc)
        snapshot_version = filing.version
        filing.version = new_version
        try:
            async with self.session_factory() as db, db.begin():
                stmt = (
                    update(FilingRow)
                    .where(FilingRow.filing_id == filing.filing_id, FilingRow.version == expected_version)
                    .values(version=new_version, **self._columns(filing))
                )
                result = await db.execute(stmt)
                matched = result.rowcount
        except IntegrityError:
            filing.version = snapshot_version
            raise ConcurrentModification(filing.filing_id, expected_version, None) from None

        if matched == 0:
            filing.version = snapshot_version
            current = await self.get(filing.filing_id)
            if current is None:
                raise FilingNotFound(filing.filing_id)
            raise ConcurrentModification(filing.filing_id, expected_version, current.version)
        logger.debug("Saved filing %s at version %s", filing.filing_id, new_version)
        return filing
