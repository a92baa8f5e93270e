"""Shared test fixtures for the ITR filing engine test suite."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from app.domain.models.filing import Actor, Fact, FactSource, ItrType, Regime, Role, Taxpayer
from app.domain.services.filing_state_machine import FilingStateMachine
from app.infrastructure.db.repositories import InMemoryFilingRepository
from app.infrastructure.external.efiling_gateway_client import SubmissionReceipt


@pytest.fixture(scope="session")
def event_loop():
    """Use a single event loop for the entire test session."""
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def user() -> Actor:
    return Actor("user-1", Role.USER)


@pytest.fixture
def ca() -> Actor:
    return Actor("ca-1", Role.CA)


@pytest.fixture
def admin() -> Actor:
    return Actor("admin-1", Role.ADMIN)


@pytest.fixture
def system_actor() -> Actor:
    return Actor("efiling-webhook", Role.SYSTEM)


@pytest.fixture
def taxpayer() -> Taxpayer:
    return Taxpayer(pan="ABCDE1234F", name="Asha Rao", dob="15/08/1990")


@pytest.fixture
def gateway():
    """Submission gateway fake that acknowledges every return."""
    gw = AsyncMock()
    gw.submit = AsyncMock(return_value=SubmissionReceipt(ack_number="ACK2025000001"))
    return gw


@pytest.fixture
def machine(gateway) -> FilingStateMachine:
    return FilingStateMachine(
        InMemoryFilingRepository(),
        gateway=gateway,
        submit_backoff_seconds=0,
    )


@pytest.fixture
def salaried_facts() -> list[Fact]:
    """A salaried taxpayer's Form 16 values, all single-source."""
    return [
        Fact("salary_income", Decimal("1200000"), FactSource.OCR_EXTRACTED, 0.9),
        Fact("section_80c", Decimal("150000"), FactSource.USER_ENTERED),
        Fact("section_80d", Decimal("25000"), FactSource.USER_ENTERED),
        Fact("tds_salary", Decimal("90000"), FactSource.AGGREGATED_STATEMENT, 0.95),
    ]


@pytest.fixture
def ready_filing(event_loop, machine, user, taxpayer, salaried_facts):
    """An ITR-1 filing driven all the way to ready_to_submit."""

    async def _drive():
        f = await machine.open_filing(user.actor_id, "2025-26", ItrType.ITR1, user, taxpayer=taxpayer)
        f = await machine.add_facts(f.filing_id, salaried_facts, user, f.version)
        f = await machine.select_regime(f.filing_id, Regime.NEW, user, f.version)
        f = await machine.complete_intake(f.filing_id, user, f.version)
        f = await machine.compute(f.filing_id, user, f.version)
        f = await machine.acknowledge_review(f.filing_id, user, f.version)
        return await machine.mark_ready_to_submit(f.filing_id, user, f.version)

    return event_loop.run_until_complete(_drive())
