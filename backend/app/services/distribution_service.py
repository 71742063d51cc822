import asyncio
import logging
import uuid

from app.core.errors import ResourceBusyError
from app.core.leases import PlanLeaseManager
from app.domain import DistributionPlan, PayoutRecord, SaleEvent
from app.services import split_calculator
from app.services.events import EventBus, TransitionEvent, log_transition
from app.services.ledger import Ledger, SqlLedger
from app.services.payout_dispatcher import PayoutDispatcher, RetryPolicy
from app.services.rate_resolver import RateResolver, RoyaltyConfigSource, RoyaltyPolicy
from app.services.royalty_config_service import SqlRoyaltyConfigSource
from app.services.transfer_client import FundsTransfer, HttpTransferClient

logger = logging.getLogger(__name__)


class DistributionService:
    """
    Sale event -> resolved shares -> computed plan -> ledger -> payouts.

    Configuration and validation problems surface before anything is written
    to the ledger.
    """

    def __init__(
        self,
        resolver: RateResolver,
        ledger: Ledger,
        dispatcher: PayoutDispatcher,
        events: EventBus,
    ):
        self.resolver = resolver
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.events = events
        self._in_flight: dict[uuid.UUID, asyncio.Event] = {}

    async def plan_sale(self, event: SaleEvent) -> DistributionPlan:
        shares = await self.resolver.resolve(
            event.artwork_id,
            event.sale_kind,
            list(event.shares) if event.shares else None,
        )
        plan = split_calculator.compute(
            event.sale_amount,
            shares,
            artwork_id=event.artwork_id,
            currency=event.currency,
            sale_kind=event.sale_kind,
        )
        await self.ledger.record_plan(plan)
        logger.info(
            f"Plan {plan.plan_id}: {event.sale_kind.value} sale of artwork {event.artwork_id} "
            f"for {event.sale_amount} split {[(s.share.beneficiary_id, s.amount) for s in plan.shares]}"
        )
        await self.events.publish(TransitionEvent(
            plan_id=plan.plan_id, status=plan.status.value, amount=plan.distributed_amount,
        ))
        return plan

    async def process_sale(self, event: SaleEvent) -> tuple[DistributionPlan, list[PayoutRecord]]:
        plan = await self.plan_sale(event)
        records = await self.dispatch(plan.plan_id)
        return await self.ledger.get_plan(plan.plan_id), records

    async def dispatch(self, plan_id: uuid.UUID, redispatch_failed: bool = False) -> list[PayoutRecord]:
        cancel_event = self._in_flight.get(plan_id)
        owner = cancel_event is None
        if owner:
            cancel_event = asyncio.Event()
            self._in_flight[plan_id] = cancel_event
        try:
            if redispatch_failed:
                return await self.dispatcher.redispatch_failed(plan_id, cancel_event)
            return await self.dispatcher.dispatch(plan_id, cancel_event)
        finally:
            if owner:
                self._in_flight.pop(plan_id, None)

    def cancel(self, plan_id: uuid.UUID) -> bool:
        """Ask an in-flight dispatch to stop before its next beneficiary."""
        cancel_event = self._in_flight.get(plan_id)
        if cancel_event is None:
            return False
        cancel_event.set()
        return True

    async def resume_pending(self) -> list[uuid.UUID]:
        """Dispatch every plan the ledger still has as pending, e.g. after a restart."""
        resumed = []
        for plan in await self.ledger.list_pending_plans():
            try:
                await self.dispatch(plan.plan_id)
            except ResourceBusyError:
                logger.info(f"Plan {plan.plan_id} is being dispatched elsewhere, skipping")
                continue
            resumed.append(plan.plan_id)
        return resumed


def build_distribution_service(
    settings,
    session_factory,
    transfer: FundsTransfer | None = None,
    config_source: RoyaltyConfigSource | None = None,
    ledger: Ledger | None = None,
) -> DistributionService:
    events = EventBus()
    events.subscribe(log_transition)
    ledger = ledger or SqlLedger(session_factory)
    transfer = transfer or HttpTransferClient(
        settings.transfer_gateway_url,
        api_key=settings.transfer_api_key,
        currency=settings.currency,
        timeout=settings.transfer_timeout_seconds,
    )
    resolver = RateResolver(
        RoyaltyPolicy.from_settings(settings),
        config_source or SqlRoyaltyConfigSource(session_factory),
    )
    dispatcher = PayoutDispatcher(
        ledger,
        transfer,
        PlanLeaseManager(timeout=settings.lease_timeout_seconds),
        events,
        retry=RetryPolicy.from_settings(settings),
    )
    return DistributionService(resolver, ledger, dispatcher, events)
