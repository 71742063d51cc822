import asyncio
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from app.core.errors import ConfigurationError, ResourceBusyError, ValidationError
from app.domain import AttemptOutcome, PayoutStatus, PlanStatus, SaleEvent, SaleKind
from app.services.distribution_service import DistributionService, build_distribution_service
from app.services.memory_ledger import InMemoryLedger
from app.services.rate_resolver import (
    ArtworkRoyaltyInfo,
    RateResolver,
    RoyaltyPolicy,
    StaticRoyaltyConfigSource,
)
from conftest import PERMANENT, FakeTransfer, share

ARTWORKS = {
    "art-1": ArtworkRoyaltyInfo("art-1", "artist-1", "wallet-artist-1"),
    "art-2": ArtworkRoyaltyInfo("art-2", "artist-2", "wallet-artist-2", royalty_percentage=Decimal("10")),
    "art-nowallet": ArtworkRoyaltyInfo("art-nowallet", "artist-3", ""),
}
COLLABORATIONS = {
    "collab-1": [share("c1", "60.003"), share("c2", "39.997")],
}


def make_service(ledger, events, make_dispatcher, transfer=None):
    resolver = RateResolver(
        RoyaltyPolicy(platform_wallet_address="wallet-platform"),
        StaticRoyaltyConfigSource(ARTWORKS, COLLABORATIONS),
    )
    dispatcher = make_dispatcher(transfer or FakeTransfer())
    return DistributionService(resolver, ledger, dispatcher, events)


def sale(artwork_id="art-1", amount=100000, kind=SaleKind.secondary, shares=None):
    return SaleEvent(
        artwork_id=artwork_id,
        sale_amount=amount,
        seller_id="seller-1",
        sale_kind=kind,
        shares=shares,
    )


@pytest.mark.asyncio
async def test_secondary_sale_pays_default_royalty(ledger, events, make_dispatcher):
    """2.5% of 1000.00 goes to the artist; the rest stays with the seller."""
    transfer = FakeTransfer()
    service = make_service(ledger, events, make_dispatcher, transfer)

    plan, records = await service.process_sale(sale())

    assert plan.status == PlanStatus.paid
    assert [(s.share.beneficiary_id, s.amount) for s in plan.shares] == [("artist-1", 2500)]
    assert plan.retained_amount == 97500
    assert records[0].status == PayoutStatus.succeeded
    assert transfer.calls[0][:2] == ("wallet-artist-1", 2500)
    assert [e.status for e in events.captured if e.beneficiary_id is None] == ["pending", "paid"]


@pytest.mark.asyncio
async def test_per_artwork_percentage(ledger, events, make_dispatcher):
    service = make_service(ledger, events, make_dispatcher)
    plan, _ = await service.process_sale(sale("art-2", amount=5000))
    assert plan.shares[0].amount == 500


@pytest.mark.asyncio
async def test_primary_sale_pays_platform(ledger, events, make_dispatcher):
    transfer = FakeTransfer()
    service = make_service(ledger, events, make_dispatcher, transfer)

    plan, _ = await service.process_sale(sale("anything", amount=20000, kind=SaleKind.primary))

    assert [(s.share.beneficiary_id, s.amount) for s in plan.shares] == [("platform", 3000)]
    assert transfer.calls[0][0] == "wallet-platform"


@pytest.mark.asyncio
async def test_collaboration_sale_is_fully_distributed(ledger, events, make_dispatcher):
    service = make_service(ledger, events, make_dispatcher)

    plan, records = await service.process_sale(sale("collab-1", amount=10000, kind=SaleKind.collaboration))

    assert [s.amount for s in plan.shares] == [6000, 4000]
    assert plan.retained_amount == 0
    assert sum(r.amount for r in records) == 10000


@pytest.mark.asyncio
async def test_explicit_collaboration_shares(ledger, events, make_dispatcher):
    service = make_service(ledger, events, make_dispatcher)
    explicit = (share("x", 50), share("y", 50))

    plan, _ = await service.process_sale(
        sale("collab-1", amount=1001, kind=SaleKind.collaboration, shares=explicit)
    )

    assert [(s.share.beneficiary_id, s.amount) for s in plan.shares] == [("x", 501), ("y", 500)]


@pytest.mark.asyncio
async def test_missing_configuration_writes_nothing(ledger, events, make_dispatcher):
    transfer = FakeTransfer()
    service = make_service(ledger, events, make_dispatcher, transfer)

    with pytest.raises(ConfigurationError):
        await service.process_sale(sale("unknown"))
    with pytest.raises(ConfigurationError):
        await service.process_sale(sale("art-nowallet"))

    assert await ledger.list_pending_plans() == []
    assert transfer.calls == []
    assert events.captured == []


@pytest.mark.asyncio
async def test_invalid_amount_writes_nothing(ledger, events, make_dispatcher):
    service = make_service(ledger, events, make_dispatcher)

    with pytest.raises(ValidationError):
        await service.process_sale(sale(amount=0))

    assert await ledger.list_pending_plans() == []


@pytest.mark.asyncio
async def test_plan_sale_does_not_dispatch(ledger, events, make_dispatcher):
    transfer = FakeTransfer()
    service = make_service(ledger, events, make_dispatcher, transfer)

    plan = await service.plan_sale(sale())

    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.pending
    assert transfer.calls == []


@pytest.mark.asyncio
async def test_redispatch_failed_through_service(ledger, events, make_dispatcher):
    service = make_service(ledger, events, make_dispatcher, FakeTransfer({"wallet-c2": [PERMANENT]}))
    plan, _ = await service.process_sale(sale("collab-1", amount=10000, kind=SaleKind.collaboration))
    assert plan.status == PlanStatus.partially_paid

    service.dispatcher.transfer = FakeTransfer()
    records = await service.dispatch(plan.plan_id, redispatch_failed=True)

    assert all(r.status == PayoutStatus.succeeded for r in records)
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.paid


@pytest.mark.asyncio
async def test_resume_pending_dispatches_open_plans(ledger, events, make_dispatcher):
    """Plans recorded before a crash are paid on the next resume."""
    transfer = FakeTransfer()
    service = make_service(ledger, events, make_dispatcher, transfer)
    first = await service.plan_sale(sale("art-1"))
    second = await service.plan_sale(sale("art-2"))

    resumed = await service.resume_pending()

    assert resumed == [first.plan_id, second.plan_id]
    assert await ledger.list_pending_plans() == []
    assert len(transfer.calls) == 2


@pytest.mark.asyncio
async def test_resume_skips_busy_plans():
    plan = SimpleNamespace(plan_id="busy")
    ledger = AsyncMock()
    ledger.list_pending_plans.return_value = [plan]
    dispatcher = AsyncMock()
    dispatcher.dispatch.side_effect = ResourceBusyError("busy")
    service = DistributionService(AsyncMock(), ledger, dispatcher, AsyncMock())

    assert await service.resume_pending() == []


@pytest.mark.asyncio
async def test_cancel_in_flight_dispatch(ledger, events, make_dispatcher):
    started = asyncio.Event()
    release = asyncio.Event()

    class BlockingTransfer(FakeTransfer):
        async def transfer(self, destination_address, amount, idempotency_token):
            started.set()
            await release.wait()
            return await super().transfer(destination_address, amount, idempotency_token)

    transfer = BlockingTransfer()
    service = make_service(ledger, events, make_dispatcher, transfer)
    plan = await service.plan_sale(sale("collab-1", amount=10000, kind=SaleKind.collaboration))

    task = asyncio.create_task(service.dispatch(plan.plan_id))
    await started.wait()
    assert service.cancel(plan.plan_id) is True
    release.set()
    records = {r.beneficiary_id: r for r in await task}

    assert records["c1"].status == PayoutStatus.succeeded
    assert records["c2"].status == PayoutStatus.pending
    assert len(transfer.calls) == 1
    assert service.cancel(plan.plan_id) is False


def test_build_distribution_service_wires_settings():
    settings = SimpleNamespace(
        transfer_gateway_url="http://gateway.test",
        transfer_api_key="",
        currency="EUR",
        transfer_timeout_seconds=3.0,
        default_royalty_percentage=Decimal("5"),
        max_artist_royalty_percentage=Decimal("15"),
        platform_royalty_percentage=Decimal("0"),
        royalty_cap=Decimal("20"),
        primary_commission_percentage=Decimal("15"),
        platform_beneficiary_id="platform",
        platform_wallet_address="wallet-platform",
        lease_timeout_seconds=1.0,
        max_payout_attempts=5,
        backoff_base_seconds=1.0,
        backoff_cap_seconds=10.0,
    )
    ledger = InMemoryLedger()
    transfer = FakeTransfer()

    service = build_distribution_service(
        settings, session_factory=None, transfer=transfer,
        config_source=StaticRoyaltyConfigSource(), ledger=ledger,
    )

    assert service.ledger is ledger
    assert service.dispatcher.transfer is transfer
    assert service.dispatcher.retry.max_attempts == 5
    assert service.dispatcher.leases.timeout == 1.0
    assert service.resolver.policy.default_royalty_percentage == Decimal("5")


@pytest.mark.asyncio
async def test_resume_finishes_interrupted_dispatch(ledger, events, make_dispatcher):
    """A crash after paying c1 and one failed try for c2 only leaves c2 to pay."""
    transfer = FakeTransfer()
    service = make_service(ledger, events, make_dispatcher, transfer)
    plan = await service.plan_sale(sale("collab-1", amount=10000, kind=SaleKind.collaboration))
    await ledger.record_payout_attempt(
        plan.plan_id, "c1", AttemptOutcome.succeeded, transaction_ref="tx-before-crash"
    )
    await ledger.record_payout_attempt(
        plan.plan_id, "c2", AttemptOutcome.transient_error, error="gateway busy"
    )

    assert await service.resume_pending() == [plan.plan_id]

    assert [c[0] for c in transfer.calls] == ["wallet-c2"]
    records = {r.beneficiary_id: r for r in await ledger.get_payout_records(plan.plan_id)}
    assert records["c1"].external_transaction_ref == "tx-before-crash"
    assert records["c1"].attempt_count == 1
    assert records["c2"].status == PayoutStatus.succeeded
    assert records["c2"].attempt_count == 2
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.paid
    assert await ledger.list_pending_plans() == []
