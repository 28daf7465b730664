# payments.py
import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Awaitable, Callable, Dict, List, Optional

from prometheus_client import Counter, Histogram

from .errors import InvalidTransitionError, NoActiveAppointmentError, NotFoundError
from .schemas import (
    Appointment,
    AppointmentStatus,
    CommissionSplit,
    PayoutSummary,
    SETTLEMENT_PIPELINE,
    SettlementOutcome,
    SettlementReport,
    SettlementStage,
    SettlementStep,
    StageState,
)
from .utils import CENT

PROVIDER_RATE = Decimal("0.8")

SETTLEMENTS_TOTAL = Counter("medic_settlements_total", "Settlement runs by outcome", ["outcome"])
SETTLEMENT_STAGE_LATENCY = Histogram("medic_settlement_stage_seconds", "Settlement stage duration in seconds", ["stage"])

StageHandler = Callable[[Appointment, SettlementStage], Awaitable[None]]


def compute_commission_split(amount) -> CommissionSplit:
    """
    Split an amount 80/20 between provider and platform.

    The provider share is rounded to the cent and the platform gets the remainder
    of the unrounded amount, so the two shares always add up to it exactly.
    """
    amount = Decimal(str(amount))
    provider_share = (amount * PROVIDER_RATE).quantize(CENT, rounding=ROUND_HALF_UP)
    return CommissionSplit(amount=amount, provider_share=provider_share, platform_share=amount - provider_share)


def simulated_stage(delay: float = 0.0) -> StageHandler:
    async def run(appointment: Appointment, stage: SettlementStage):
        await asyncio.sleep(delay)
    return run


def _now():
    return datetime.now(timezone.utc)


class PaymentOrchestrator:
    """
    Runs the tokenization -> authorization -> commission-distribution pipeline.

    Each stage is awaited as its own task with an advisory timeout. The appointment
    status is re-read before every stage, and confirmation goes through the ledger,
    so a cancellation landing mid-run always wins.
    """

    def __init__(self, ledger, stage_handlers: Optional[Dict[SettlementStage, StageHandler]] = None,
                 stage_timeout: float = 10.0, stage_delay: float = 0.0):
        self.ledger = ledger
        self.stage_timeout = stage_timeout
        self.stage_handlers = {stage: simulated_stage(stage_delay) for stage in SETTLEMENT_PIPELINE}
        self.stage_handlers.update(stage_handlers or {})
        self._guard = threading.Lock()
        self._in_flight = set()
        self._splits: Dict[str, CommissionSplit] = {}

    async def run_settlement(self, appointment_id: str) -> SettlementReport:
        try:
            appointment = self.ledger.get(appointment_id)
        except NotFoundError:
            raise NoActiveAppointmentError(appointment_id)

        if appointment.status == AppointmentStatus.CONFIRMED:
            steps = [SettlementStep(stage=stage, state=StageState.DONE) for stage in SETTLEMENT_PIPELINE]
            return self._finish(appointment, SettlementOutcome.ALREADY_SETTLED, steps, self.split_for(appointment))
        if appointment.status != AppointmentStatus.PENDING_PAYMENT:
            raise NoActiveAppointmentError(appointment_id, appointment.status.value)

        with self._guard:
            if appointment_id in self._in_flight:
                steps = [SettlementStep(stage=stage) for stage in SETTLEMENT_PIPELINE]
                return self._finish(appointment, SettlementOutcome.IN_PROGRESS, steps)
            self._in_flight.add(appointment_id)
        try:
            return await self._run_pipeline(appointment_id)
        finally:
            with self._guard:
                self._in_flight.discard(appointment_id)

    def run_settlement_sync(self, appointment_id: str) -> SettlementReport:
        return asyncio.run(self.run_settlement(appointment_id))

    async def _run_pipeline(self, appointment_id: str) -> SettlementReport:
        steps = [SettlementStep(stage=stage) for stage in SETTLEMENT_PIPELINE]
        logging.info(f"Settlement started for appointment {appointment_id}")

        for step in steps:
            current = self.ledger.get(appointment_id)
            if current.status != AppointmentStatus.PENDING_PAYMENT:
                logging.warning(f"Settlement of {appointment_id} aborted before {step.stage.value}: "
                                f"appointment is {current.status.value}")
                return self._finish(current, SettlementOutcome.ABORTED, steps)

            step.state = StageState.IN_PROGRESS
            step.started_at = _now()
            started = time.monotonic()
            handler = self.stage_handlers[step.stage]
            try:
                await asyncio.wait_for(handler(current, step.stage), timeout=self.stage_timeout)
            except asyncio.TimeoutError:
                step.state = StageState.ERROR
                step.finished_at = _now()
                logging.warning(f"Settlement stage {step.stage.value} stalled for {appointment_id} "
                                f"after {self.stage_timeout}s")
                return self._finish(current, SettlementOutcome.STALLED, steps)
            except Exception as e:
                step.state = StageState.ERROR
                step.finished_at = _now()
                logging.error(f"Settlement stage {step.stage.value} failed for {appointment_id}: {str(e)}")
                return self._finish(current, SettlementOutcome.FAILED, steps)

            step.state = StageState.DONE
            step.finished_at = _now()
            SETTLEMENT_STAGE_LATENCY.labels(stage=step.stage.value).observe(time.monotonic() - started)

        try:
            confirmed = self.ledger.mark_paid(appointment_id)
        except InvalidTransitionError:
            current = self.ledger.get(appointment_id)
            logging.warning(f"Settlement of {appointment_id} finished but appointment is {current.status.value}")
            return self._finish(current, SettlementOutcome.ABORTED, steps)

        split = compute_commission_split(confirmed.price)
        with self._guard:
            split = self._splits.setdefault(appointment_id, split)
        logging.info(f"Appointment {appointment_id} settled: provider {split.provider_share}, "
                     f"platform {split.platform_share}")
        return self._finish(confirmed, SettlementOutcome.SETTLED, steps, split)

    def _finish(self, appointment: Appointment, outcome: SettlementOutcome, steps: List[SettlementStep],
                split: Optional[CommissionSplit] = None) -> SettlementReport:
        SETTLEMENTS_TOTAL.labels(outcome=outcome.value).inc()
        return SettlementReport(
            appointment_id=appointment.id,
            outcome=outcome,
            status=appointment.status,
            steps=steps,
            split=split,
        )

    def split_for(self, appointment: Appointment) -> CommissionSplit:
        with self._guard:
            split = self._splits.get(appointment.id)
        return split or compute_commission_split(appointment.price)

    def payout_summary(self) -> PayoutSummary:
        confirmed = self.ledger.list_by_status(AppointmentStatus.CONFIRMED)
        total = sum((appointment.price for appointment in confirmed), Decimal("0"))
        split = compute_commission_split(total)
        return PayoutSummary(
            appointments=len(confirmed),
            total=split.amount,
            provider_share=split.provider_share,
            platform_share=split.platform_share,
        )
