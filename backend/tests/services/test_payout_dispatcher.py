import asyncio

import httpx
import pytest

from app.core.errors import ResourceBusyError
from app.domain import AttemptOutcome, PayoutStatus, PlanStatus
from app.services import split_calculator
from app.services.payout_dispatcher import RetryPolicy
from app.services.transfer_client import HttpTransferClient
from conftest import PERMANENT, TRANSIENT, FakeTransfer, share


async def record_plan(ledger, sale_amount, shares):
    plan = split_calculator.compute(sale_amount, shares, artwork_id="art-1")
    await ledger.record_plan(plan)
    return plan


def by_beneficiary(records):
    return {r.beneficiary_id: r for r in records}


class SlowTransfer(FakeTransfer):
    async def transfer(self, destination_address, amount, idempotency_token):
        await asyncio.sleep(1)
        return await super().transfer(destination_address, amount, idempotency_token)


def test_backoff_doubles_and_caps():
    retry = RetryPolicy(base_delay=2.0, max_delay=30.0)
    assert [retry.delay_after(n) for n in range(1, 7)] == [2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


@pytest.mark.asyncio
async def test_all_payouts_succeed(ledger, events, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 60), share("b", 40)])
    transfer = FakeTransfer()

    records = by_beneficiary(await make_dispatcher(transfer).dispatch(plan.plan_id))

    assert records["a"].status == PayoutStatus.succeeded
    assert records["a"].amount == 6000
    assert records["b"].amount == 4000
    assert records["a"].external_transaction_ref
    assert records["a"].attempt_count == 1
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.paid
    assert [c[:2] for c in transfer.calls] == [("wallet-a", 6000), ("wallet-b", 4000)]

    assert [(e.beneficiary_id, e.status) for e in events.captured] == [
        ("a", "succeeded"),
        ("b", "succeeded"),
        (None, "paid"),
    ]
    assert events.captured[-1].amount == 10000


@pytest.mark.asyncio
async def test_transfers_carry_idempotency_token(ledger, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 100)])
    transfer = FakeTransfer()
    await make_dispatcher(transfer).dispatch(plan.plan_id)

    record = await ledger.get_payout_record(plan.plan_id, "a")
    assert transfer.calls[0][2] == record.idempotency_token


@pytest.mark.asyncio
async def test_second_dispatch_does_not_pay_again(ledger, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 60), share("b", 40)])
    transfer = FakeTransfer()
    dispatcher = make_dispatcher(transfer)

    await dispatcher.dispatch(plan.plan_id)
    await dispatcher.dispatch(plan.plan_id)

    assert len(transfer.calls) == 2
    assert len(await ledger.list_attempts(plan.plan_id)) == 2


@pytest.mark.asyncio
async def test_permanent_failure_leaves_plan_partially_paid(ledger, events, make_dispatcher):
    plan = await record_plan(
        ledger, 9000, [share("a", 50), share("b", 30), share("c", 20)]
    )
    transfer = FakeTransfer({"wallet-c": [PERMANENT]})

    records = by_beneficiary(await make_dispatcher(transfer).dispatch(plan.plan_id))

    assert records["a"].status == PayoutStatus.succeeded
    assert records["b"].status == PayoutStatus.succeeded
    assert records["c"].status == PayoutStatus.failed
    assert records["c"].attempt_count == 1
    assert "invalid destination" in records["c"].last_error
    assert len(transfer.calls_to("wallet-c")) == 1
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.partially_paid

    failure = [e for e in events.captured if e.beneficiary_id == "c"]
    assert failure[0].error_kind == "permanent"


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(ledger, sleeper, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 100)])
    transfer = FakeTransfer({"wallet-a": [TRANSIENT, TRANSIENT, None]})

    records = await make_dispatcher(transfer).dispatch(plan.plan_id)

    assert records[0].status == PayoutStatus.succeeded
    assert records[0].attempt_count == 3
    assert sleeper.delays == [2.0, 4.0]
    attempts = await ledger.list_attempts(plan.plan_id)
    assert [a.outcome for a in attempts] == [
        AttemptOutcome.transient_error,
        AttemptOutcome.transient_error,
        AttemptOutcome.succeeded,
    ]
    assert [a.attempt_number for a in attempts] == [1, 2, 3]
    # The same key is reused on every retry.
    assert len({c[2] for c in transfer.calls}) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_fail_the_payout(ledger, events, sleeper, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 100)])
    transfer = FakeTransfer({"wallet-a": [TRANSIENT]})

    records = await make_dispatcher(transfer).dispatch(plan.plan_id)

    assert records[0].status == PayoutStatus.failed
    assert records[0].attempt_count == 3
    assert len(transfer.calls) == 3
    assert sleeper.delays == [2.0, 4.0]
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.failed
    assert [e.error_kind for e in events.captured if e.beneficiary_id == "a"] == ["transient"] * 3


@pytest.mark.asyncio
async def test_transfer_timeout_counts_as_transient(ledger, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 100)])
    retry = RetryPolicy(max_attempts=2, attempt_timeout=0.01)

    records = await make_dispatcher(SlowTransfer(), retry=retry).dispatch(plan.plan_id)

    assert records[0].status == PayoutStatus.failed
    assert records[0].attempt_count == 2
    assert "timed out" in records[0].last_error


@pytest.mark.asyncio
async def test_zero_amount_payout_settles_without_transfer(ledger, make_dispatcher):
    plan = await record_plan(ledger, 1, [share("a", 50), share("b", 50)])
    transfer = FakeTransfer()

    records = by_beneficiary(await make_dispatcher(transfer).dispatch(plan.plan_id))

    assert records["a"].amount == 1
    assert records["b"].amount == 0
    assert records["b"].status == PayoutStatus.succeeded
    assert transfer.calls_to("wallet-b") == []
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.paid


@pytest.mark.asyncio
async def test_cancel_stops_before_next_beneficiary(ledger, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 60), share("b", 40)])
    cancel = asyncio.Event()

    class CancellingTransfer(FakeTransfer):
        async def transfer(self, destination_address, amount, idempotency_token):
            result = await super().transfer(destination_address, amount, idempotency_token)
            cancel.set()
            return result

    transfer = CancellingTransfer()
    records = by_beneficiary(await make_dispatcher(transfer).dispatch(plan.plan_id, cancel))

    assert records["a"].status == PayoutStatus.succeeded
    assert records["b"].status == PayoutStatus.pending
    assert transfer.calls_to("wallet-b") == []
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.pending

    # A later dispatch picks up where the cancelled one stopped.
    await make_dispatcher(FakeTransfer()).dispatch(plan.plan_id)
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.paid


@pytest.mark.asyncio
async def test_redispatch_failed_reuses_tokens(ledger, events, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 60), share("b", 40)])
    first = FakeTransfer({"wallet-b": [PERMANENT]})
    await make_dispatcher(first).dispatch(plan.plan_id)
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.partially_paid

    second = FakeTransfer()
    records = by_beneficiary(await make_dispatcher(second).redispatch_failed(plan.plan_id))

    assert records["b"].status == PayoutStatus.succeeded
    assert records["b"].attempt_count == 2
    assert second.calls_to("wallet-a") == []
    assert second.calls_to("wallet-b")[0][2] == first.calls_to("wallet-b")[0][2]
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.paid
    assert [e.status for e in events.captured if e.beneficiary_id is None] == [
        "partially_paid", "pending", "paid",
    ]


@pytest.mark.asyncio
async def test_redispatch_without_failures_is_a_plain_dispatch(ledger, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 100)])
    transfer = FakeTransfer()
    dispatcher = make_dispatcher(transfer)
    await dispatcher.dispatch(plan.plan_id)

    await dispatcher.redispatch_failed(plan.plan_id)

    assert len(transfer.calls) == 1


@pytest.mark.asyncio
async def test_dispatch_rejected_while_plan_is_leased(ledger, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 100)])
    transfer = FakeTransfer()
    dispatcher = make_dispatcher(transfer, lease_timeout=0.05)

    async with dispatcher.leases.lease(plan.plan_id):
        with pytest.raises(ResourceBusyError):
            await dispatcher.dispatch(plan.plan_id)

    assert transfer.calls == []
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.pending


@pytest.mark.asyncio
async def test_concurrent_dispatches_pay_once(ledger, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 60), share("b", 40)])
    transfer = FakeTransfer()
    dispatcher = make_dispatcher(transfer, lease_timeout=5.0)

    await asyncio.gather(dispatcher.dispatch(plan.plan_id), dispatcher.dispatch(plan.plan_id))

    assert len(transfer.calls) == 2
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.paid


@pytest.mark.asyncio
async def test_unexpected_transfer_error_is_recorded_and_retried(ledger, sleeper, make_dispatcher):
    plan = await record_plan(ledger, 10000, [share("a", 100)])
    transfer = FakeTransfer({"wallet-a": [RuntimeError("socket closed"), None]})

    records = await make_dispatcher(transfer).dispatch(plan.plan_id)

    assert records[0].status == PayoutStatus.succeeded
    assert records[0].attempt_count == 2
    assert sleeper.delays == [2.0]
    attempts = await ledger.list_attempts(plan.plan_id)
    assert attempts[0].outcome == AttemptOutcome.transient_error
    assert "socket closed" in attempts[0].error


@pytest.mark.asyncio
async def test_dropped_gateway_connection_is_recorded(ledger, make_dispatcher):
    """A gateway that hangs up mid-request still leaves an attempt trail."""
    def handler(request):
        raise httpx.RemoteProtocolError("Server disconnected without sending a response")

    http = httpx.AsyncClient(base_url="http://gateway.test", transport=httpx.MockTransport(handler))
    client = HttpTransferClient("http://gateway.test", client=http)
    plan = await record_plan(ledger, 10000, [share("a", 100)])

    records = await make_dispatcher(client).dispatch(plan.plan_id)

    assert records[0].status == PayoutStatus.failed
    attempts = await ledger.list_attempts(plan.plan_id)
    assert [a.outcome for a in attempts] == [AttemptOutcome.transient_error] * 3
    assert await ledger.get_plan_status(plan.plan_id) == PlanStatus.failed
