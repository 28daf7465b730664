import asyncio
from decimal import Decimal

import pytest

from medic_connect.app.errors import NoActiveAppointmentError
from medic_connect.app.payments import PaymentOrchestrator, compute_commission_split
from medic_connect.app.schemas import (
    AppointmentStatus,
    SettlementOutcome,
    SettlementStage,
    StageState,
)

from conftest import patient


@pytest.fixture
def appointment(services, dr_x, next_monday):
    return services.ledger.book(dr_x.id, "patient-1", next_monday, "09:00", "in-person")


def test_settlement_confirms_and_splits(services, appointment):
    report = asyncio.run(services.payments.run_settlement(appointment.id))

    assert report.outcome == SettlementOutcome.SETTLED
    assert report.status == AppointmentStatus.CONFIRMED
    assert [step.stage for step in report.steps] == [
        SettlementStage.TOKENIZATION, SettlementStage.AUTHORIZATION, SettlementStage.COMMISSION_DISTRIBUTION
    ]
    assert all(step.state == StageState.DONE for step in report.steps)
    assert report.split.provider_share == Decimal("52.00")
    assert report.split.platform_share == Decimal("13.00")
    assert services.ledger.get(appointment.id).status == AppointmentStatus.CONFIRMED


def test_second_settlement_is_a_no_op(services, appointment):
    first = asyncio.run(services.payments.run_settlement(appointment.id))
    second = asyncio.run(services.payments.run_settlement(appointment.id))

    assert second.outcome == SettlementOutcome.ALREADY_SETTLED
    assert second.split == first.split
    assert services.payments.payout_summary().appointments == 1


def test_settlement_requires_pending_payment(services, dr_x, next_monday):
    with pytest.raises(NoActiveAppointmentError):
        asyncio.run(services.payments.run_settlement("appt-999999"))

    manual = services.ledger.book_manual(dr_x.id, "patient-1", next_monday, "10:00", "in-person")
    with pytest.raises(NoActiveAppointmentError):
        asyncio.run(services.payments.run_settlement(manual.id))

    services.ledger.cancel(manual.id, patient())
    with pytest.raises(NoActiveAppointmentError) as excinfo:
        asyncio.run(services.payments.run_settlement(manual.id))
    assert excinfo.value.status == "cancelled"


def test_stages_run_in_order(services, appointment):
    seen = []

    async def record(appt, stage):
        seen.append(stage)

    orchestrator = PaymentOrchestrator(
        services.ledger, stage_handlers={stage: record for stage in SettlementStage})
    asyncio.run(orchestrator.run_settlement(appointment.id))
    assert seen == [
        SettlementStage.TOKENIZATION, SettlementStage.AUTHORIZATION, SettlementStage.COMMISSION_DISTRIBUTION
    ]


def test_cancellation_mid_settlement_wins(services, appointment):
    async def cancel_during_authorization(appt, stage):
        services.ledger.cancel(appt.id, patient())

    orchestrator = PaymentOrchestrator(
        services.ledger, stage_handlers={SettlementStage.AUTHORIZATION: cancel_during_authorization})
    report = asyncio.run(orchestrator.run_settlement(appointment.id))

    assert report.outcome == SettlementOutcome.ABORTED
    assert report.status == AppointmentStatus.CANCELLED
    assert report.split is None
    assert report.steps[2].state == StageState.PENDING
    assert services.ledger.get(appointment.id).status == AppointmentStatus.CANCELLED


def test_stalled_stage_leaves_appointment_retryable(services, appointment):
    async def hang(appt, stage):
        await asyncio.sleep(1)

    orchestrator = PaymentOrchestrator(
        services.ledger, stage_handlers={SettlementStage.TOKENIZATION: hang}, stage_timeout=0.05)
    report = asyncio.run(orchestrator.run_settlement(appointment.id))

    assert report.outcome == SettlementOutcome.STALLED
    assert report.steps[0].state == StageState.ERROR
    assert services.ledger.get(appointment.id).status == AppointmentStatus.PENDING_PAYMENT

    retry = asyncio.run(services.payments.run_settlement(appointment.id))
    assert retry.outcome == SettlementOutcome.SETTLED


def test_failed_stage_reports_failure(services, appointment):
    async def decline(appt, stage):
        raise RuntimeError("card declined")

    orchestrator = PaymentOrchestrator(
        services.ledger, stage_handlers={SettlementStage.AUTHORIZATION: decline})
    report = asyncio.run(orchestrator.run_settlement(appointment.id))

    assert report.outcome == SettlementOutcome.FAILED
    assert [step.state for step in report.steps] == [StageState.DONE, StageState.ERROR, StageState.PENDING]
    assert services.ledger.get(appointment.id).status == AppointmentStatus.PENDING_PAYMENT


def test_concurrent_runs_for_one_appointment(services, appointment):
    async def slow(appt, stage):
        await asyncio.sleep(0.05)

    orchestrator = PaymentOrchestrator(
        services.ledger, stage_handlers={SettlementStage.TOKENIZATION: slow})

    async def both():
        return await asyncio.gather(
            orchestrator.run_settlement(appointment.id),
            orchestrator.run_settlement(appointment.id),
        )

    outcomes = sorted(report.outcome.value for report in asyncio.run(both()))
    assert outcomes == [SettlementOutcome.IN_PROGRESS.value, SettlementOutcome.SETTLED.value]


def test_parallel_settlements_of_different_appointments(services, next_monday):
    first = services.ledger.book("md-cortes", "patient-1", next_monday, "09:00", "in-person")
    second = services.ledger.book("md-jurado", "patient-2", next_monday, "10:00", "in-person")

    async def both():
        return await asyncio.gather(
            services.payments.run_settlement(first.id),
            services.payments.run_settlement(second.id),
        )

    reports = asyncio.run(both())
    assert all(report.outcome == SettlementOutcome.SETTLED for report in reports)

    summary = services.payments.payout_summary()
    assert summary.appointments == 2
    assert summary.total == Decimal("107.00")
    assert summary.provider_share == Decimal("85.60")
    assert summary.platform_share == Decimal("21.40")


@pytest.mark.parametrize("amount", [
    "0.01", "0.03", "0.05", "0.99", "1", "19.99", "33.33", "42", "65", "99.99", "1234.57",
])
def test_commission_split_is_exact(amount):
    split = compute_commission_split(amount)
    assert split.provider_share + split.platform_share == Decimal(amount)
    assert abs(split.provider_share - Decimal(amount) * Decimal("0.8")) <= Decimal("0.005")
    assert split.provider_share.as_tuple().exponent == -2


def test_split_for_unsettled_appointment(services, appointment):
    split = services.payments.split_for(appointment)
    assert split.amount == Decimal("65.00")
    assert split.provider_share == Decimal("52.00")


def test_commission_split_of_sub_cent_amount():
    split = compute_commission_split(Decimal("10.005"))
    assert split.amount == Decimal("10.005")
    assert split.provider_share == Decimal("8.00")
    assert split.provider_share + split.platform_share == Decimal("10.005")


def test_settled_split_adds_up_to_booked_price(services, register_provider, next_monday):
    provider = register_provider(price="33.33")
    appointment = services.ledger.book(provider.id, "patient-1", next_monday, "09:00", "in-person")

    report = asyncio.run(services.payments.run_settlement(appointment.id))

    assert report.split.amount == appointment.price
    assert report.split.provider_share + report.split.platform_share == appointment.price
    assert services.payments.payout_summary().total == appointment.price
