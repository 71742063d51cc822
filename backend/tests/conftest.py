from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.core.database import Base
from app.core.errors import PermanentError, TransientError
from app.core.leases import PlanLeaseManager
from app.domain import BeneficiaryRole, BeneficiaryShare
from app.services.events import EventBus
from app.services.memory_ledger import InMemoryLedger
from app.services.payout_dispatcher import PayoutDispatcher, RetryPolicy
from app.services.transfer_client import TransferResult


class FakeTransfer:
    """
    Scripted funds-transfer collaborator.

    script maps a destination address to a list of outcomes consumed in
    order; the last outcome repeats. An outcome is an exception to raise or
    None for success.
    """

    def __init__(self, script: dict | None = None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls: list[tuple[str, int, str]] = []
        self._settled: dict[str, str] = {}

    async def transfer(self, destination_address, amount, idempotency_token):
        self.calls.append((destination_address, amount, idempotency_token))
        outcomes = self.script.get(destination_address)
        if outcomes:
            outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
            if outcome is not None:
                raise outcome
        ref = self._settled.setdefault(idempotency_token, f"tx-{len(self._settled) + 1}")
        return TransferResult(transaction_ref=ref)

    def calls_to(self, destination_address):
        return [c for c in self.calls if c[0] == destination_address]


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def share(beneficiary_id, percentage, role=BeneficiaryRole.collaborator, wallet=None):
    return BeneficiaryShare(
        beneficiary_id=beneficiary_id,
        percentage=Decimal(str(percentage)),
        role=role,
        wallet_address=wallet if wallet is not None else f"wallet-{beneficiary_id}",
    )


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def events():
    bus = EventBus()
    bus.captured = []
    bus.subscribe(bus.captured.append)
    return bus


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def make_dispatcher(ledger, events, sleeper):
    def _make(transfer, lease_timeout=0.1, retry=None):
        return PayoutDispatcher(
            ledger,
            transfer,
            PlanLeaseManager(timeout=lease_timeout),
            events,
            retry=retry or RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=30.0, attempt_timeout=15.0),
            sleep=sleeper,
        )
    return _make


TRANSIENT = TransientError("gateway busy")
PERMANENT = PermanentError("invalid destination")


async def sql_session_factory():
    """Fresh in-memory SQLite database with the full schema."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
