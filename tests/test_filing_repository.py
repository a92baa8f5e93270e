"""Tests for the filing repositories (in-memory and SQLAlchemy)."""

from decimal import Decimal

import pytest

from app.core.db import create_engine_for, create_session_factory, create_tables
from app.domain.errors import ConcurrentModification, DuplicateFiling, FilingNotFound
from app.domain.models.filing import Fact, FactSource, Filing, FilingStatus, ItrType
from app.infrastructure.db.repositories import InMemoryFilingRepository, SqlFilingRepository


@pytest.fixture(params=["memory", "sql"])
def repository(request, event_loop):
    if request.param == "memory":
        yield InMemoryFilingRepository()
        return
    engine = create_engine_for("sqlite+aiosqlite:///:memory:")
    event_loop.run_until_complete(create_tables(engine))
    yield SqlFilingRepository(create_session_factory(engine))
    event_loop.run_until_complete(engine.dispose())


def _filing(owner="u1", filing_for="self") -> Filing:
    return Filing(owner_id=owner, assessment_year="2025-26", itr_type=ItrType.ITR1, filing_for=filing_for)


class TestRepository:
    def test_add_and_get_round_trip(self, event_loop, repository):
        async def _run():
            filing = _filing()
            filing.facts.append(Fact("salary_income", Decimal("950000.50"), FactSource.USER_ENTERED))
            await repository.add(filing)
            loaded = await repository.get(filing.filing_id)
            assert loaded.filing_id == filing.filing_id
            assert loaded.facts == filing.facts
            assert loaded.version == 1
            assert await repository.get("missing") is None

        event_loop.run_until_complete(_run())

    def test_one_in_progress_per_key(self, event_loop, repository):
        async def _run():
            first = _filing()
            await repository.add(first)
            with pytest.raises(DuplicateFiling) as exc_info:
                await repository.add(_filing())
            assert exc_info.value.existing_filing_id == first.filing_id
            await repository.add(_filing(filing_for="dependent-1"))
            await repository.add(_filing(owner="u2"))

        event_loop.run_until_complete(_run())

    def test_submitted_filing_frees_the_key(self, event_loop, repository):
        async def _run():
            first = _filing()
            await repository.add(first)
            first.status = FilingStatus.SUBMITTED
            first.ack_number = "ACK1"
            await repository.save(first, 1)
            assert await repository.find_in_progress("u1", "2025-26", "self") is None
            assert (await repository.find_by_ack("ACK1")).filing_id == first.filing_id
            await repository.add(_filing())

        event_loop.run_until_complete(_run())

    def test_save_bumps_version(self, event_loop, repository):
        async def _run():
            filing = _filing()
            await repository.add(filing)
            saved = await repository.save(filing, 1)
            assert saved.version == 2
            assert (await repository.get(filing.filing_id)).version == 2

        event_loop.run_until_complete(_run())

    def test_stale_save_rejected(self, event_loop, repository):
        async def _run():
            filing = _filing()
            await repository.add(filing)
            a = await repository.get(filing.filing_id)
            b = await repository.get(filing.filing_id)
            await repository.save(a, 1)
            with pytest.raises(ConcurrentModification) as exc_info:
                await repository.save(b, 1)
            assert exc_info.value.actual_version == 2

        event_loop.run_until_complete(_run())

    def test_save_unknown_filing(self, event_loop, repository):
        with pytest.raises(FilingNotFound):
            event_loop.run_until_complete(repository.save(_filing(), 1))
